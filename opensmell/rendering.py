"""
2D Structure Rendering for OpenSmell

Draws SMILES strings as SVG depictions with RDKit. Rendering is async so the
web layer can await it without blocking the event loop; the actual RDKit
drawing runs in a worker thread.

Three layers:
- StructureRenderer: the one capability the rest of the code depends on,
  ``await render(smiles) -> Depiction`` (raises RenderError)
- SharedRenderer: lazily initialized handle, set up at most once no matter
  how many callers ask for it concurrently
- RenderSession: per-view bookkeeping. Tracks a render state per visible
  record, coalesces duplicate requests, keeps failures local to one item,
  and drops results that arrive after their record left the view
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Union

from opensmell.chemdata.odor_index import ChemicalRecord

logger = logging.getLogger(__name__)

try:
    from rdkit import Chem
    from rdkit.Chem import AllChem
    from rdkit.Chem.Draw import rdMolDraw2D
    HAS_RDKIT = True
except ImportError:
    HAS_RDKIT = False
    logger.warning("RDKit not available - structure rendering disabled")

DEFAULT_WIDTH = 280
DEFAULT_HEIGHT = 180
PRIORITY_RENDER_COUNT = 6

# Anything shorter cannot be a real drawing
MIN_SVG_LENGTH = 100


class RenderError(Exception):
    """Raised when a structure cannot be rendered."""


@dataclass(frozen=True)
class Depiction:
    smiles: str
    svg: str


class StructureRenderer(Protocol):
    async def render(self, smiles: str) -> Depiction:
        ...


class RDKitRenderer:
    """
    SVG depictions via RDKit's MolDraw2DSVG.
    """

    def __init__(self, width: int = DEFAULT_WIDTH, height: int = DEFAULT_HEIGHT):
        if not HAS_RDKIT:
            raise RenderError("RDKit not available for structure rendering")
        self.width = width
        self.height = height

    def draw_svg(self, smiles: str) -> str:
        """
        Draw a SMILES string synchronously.

        Raises:
            RenderError: if RDKit cannot parse or draw the structure
        """
        if not smiles or not smiles.strip():
            raise RenderError("Empty SMILES string")

        mol = Chem.MolFromSmiles(smiles)
        if mol is None:
            raise RenderError(f"Invalid SMILES: {smiles}")

        try:
            AllChem.Compute2DCoords(mol)
            mol = rdMolDraw2D.PrepareMolForDrawing(mol)

            drawer = rdMolDraw2D.MolDraw2DSVG(self.width, self.height)
            opts = drawer.drawOptions()
            opts.setBackgroundColour((1, 1, 1, 0))
            opts.bondLineWidth = 2.0
            opts.addStereoAnnotation = True
            opts.padding = 0.12

            drawer.DrawMolecule(mol)
            drawer.FinishDrawing()
            svg = drawer.GetDrawingText()
        except Exception as e:
            raise RenderError(f"Drawing failed for {smiles}: {e}") from e

        if not svg or len(svg) < MIN_SVG_LENGTH:
            raise RenderError(f"Generated SVG is invalid for {smiles}")
        return svg

    async def render(self, smiles: str) -> Depiction:
        svg = await asyncio.to_thread(self.draw_svg, smiles)
        return Depiction(smiles=smiles, svg=svg)


RendererFactory = Callable[[], Union[StructureRenderer, Awaitable[StructureRenderer]]]


class SharedRenderer:
    """
    Lazily initialized renderer handle.

    The factory runs at most once while it keeps succeeding. Callers that
    arrive while initialization is in progress wait on the same attempt.
    If the attempt fails every waiter sees the error and the next call
    starts a fresh attempt.
    """

    def __init__(self, factory: RendererFactory = RDKitRenderer):
        self._factory = factory
        self._renderer: Optional[StructureRenderer] = None
        self._init_task: Optional[asyncio.Future] = None
        self.init_attempts = 0

    @property
    def ready(self) -> bool:
        return self._renderer is not None

    async def _initialize(self) -> StructureRenderer:
        self.init_attempts += 1
        logger.info("Initializing structure renderer")
        try:
            renderer = await asyncio.to_thread(self._factory)
            if asyncio.iscoroutine(renderer):
                renderer = await renderer
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"Renderer initialization failed: {e}") from e
        self._renderer = renderer
        logger.info("Structure renderer ready")
        return renderer

    async def get(self) -> StructureRenderer:
        if self._renderer is not None:
            return self._renderer

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task

        try:
            # shield: one cancelled caller must not cancel the shared attempt
            return await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def render(self, smiles: str) -> Depiction:
        renderer = await self.get()
        return await renderer.render(smiles)


class RenderState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RENDERED = "rendered"
    FAILED = "failed"


@dataclass
class ItemRender:
    """Render state of one record in a view."""
    cid: int
    state: RenderState = RenderState.IDLE
    svg: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cid": self.cid,
            "state": self.state.value,
            "svg": self.svg,
            "error": self.error,
        }


class RenderSession:
    """
    Render bookkeeping for the records currently on screen.

    Rendering is lazy: nothing is drawn until request() is called for a
    record (or render_priority() for the first few). A failed item stays
    failed until retry() is called for it.
    """

    def __init__(
        self,
        renderer: StructureRenderer,
        records: Iterable[ChemicalRecord] = (),
        priority_count: int = PRIORITY_RENDER_COUNT,
    ):
        self._renderer = renderer
        self.priority_count = priority_count
        self._visible: Dict[int, ChemicalRecord] = {}
        self._items: Dict[int, ItemRender] = {}
        self._inflight: Dict[int, asyncio.Future] = {}
        self.set_visible(records)

    def set_visible(self, records: Iterable[ChemicalRecord]):
        """
        Switch the view to a new set of records.

        Finished renders of records that stay visible are kept. Renders
        still running for records that left the view are discarded when
        they complete.
        """
        self._visible = {record.cid: record for record in records}
        for cid in list(self._inflight):
            if cid not in self._visible:
                del self._inflight[cid]
        self._items = {
            cid: item for cid, item in self._items.items()
            if cid in self._visible
        }

    @property
    def visible_cids(self) -> List[int]:
        return list(self._visible)

    def state(self, cid: int) -> Optional[ItemRender]:
        if cid not in self._visible:
            return None
        return self._items.get(cid, ItemRender(cid))

    def states(self) -> List[ItemRender]:
        return [self.state(cid) for cid in self._visible]

    async def _render(self, cid: int, smiles: str):
        task = asyncio.current_task()
        try:
            depiction = await self._renderer.render(smiles)
        except asyncio.CancelledError:
            if self._inflight.get(cid) is task:
                del self._inflight[cid]
                item = self._items.setdefault(cid, ItemRender(cid))
                item.state, item.svg, item.error = RenderState.FAILED, None, "Render cancelled"
            raise
        except Exception as e:
            logger.warning(f"Failed to render CID {cid}: {e}")
            outcome = (RenderState.FAILED, None, str(e))
        else:
            outcome = (RenderState.RENDERED, depiction.svg, None)

        if self._inflight.get(cid) is not task:
            logger.debug(f"Discarding stale render for CID {cid}")
            return
        del self._inflight[cid]

        item = self._items.setdefault(cid, ItemRender(cid))
        item.state, item.svg, item.error = outcome

    async def request(self, cid: int) -> Optional[ItemRender]:
        """
        Render one visible record, or join the render already running for it.

        Returns the item's state afterwards, or None if the record is not
        (or no longer) visible.
        """
        record = self._visible.get(cid)
        if record is None:
            return None

        item = self._items.setdefault(cid, ItemRender(cid))
        if item.state in (RenderState.RENDERED, RenderState.FAILED):
            return item

        task = self._inflight.get(cid)
        if task is None:
            item.state = RenderState.PENDING
            task = asyncio.ensure_future(self._render(cid, record.smiles))
            self._inflight[cid] = task

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # only the render was cancelled; the caller keeps running
            if not task.cancelled():
                raise
        return self.state(cid)

    async def retry(self, cid: int) -> Optional[ItemRender]:
        """Re-trigger a failed render."""
        item = self._items.get(cid)
        if item is not None and item.state == RenderState.FAILED:
            item.state, item.error = RenderState.IDLE, None
        return await self.request(cid)

    async def render_priority(self) -> List[ItemRender]:
        """Eagerly render the first priority_count visible records."""
        cids = list(self._visible)[:self.priority_count]
        return list(await asyncio.gather(*(self.request(cid) for cid in cids)))

    async def render_visible(self) -> List[ItemRender]:
        """Render every visible record."""
        return list(await asyncio.gather(*(self.request(cid) for cid in list(self._visible))))
