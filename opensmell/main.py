"""
OpenSmell Web Interface - Main Application

Serves the odor search index over HTTP:
- Odor descriptor and chemical identity search with batch reveal
- Chemical detail lookup by PubChem CID
- 2D structure depictions rendered on demand with RDKit
- Descriptor and source statistics computed from the index

The index is read-only; nothing here writes data.

Author: OpenSmell Development Team
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from fastapi import FastAPI, Request, HTTPException, Query, Depends
from fastapi.responses import HTMLResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from opensmell.chemdata import odor_index
from opensmell.chemdata.odor_index import ChemicalRecord
from opensmell.pagination import ResultPaginator, DEFAULT_ITEMS_PER_PAGE
from opensmell.rendering import (
    RDKitRenderer,
    RenderError,
    RenderSession,
    RenderState,
    SharedRenderer,
    StructureRenderer,
    PRIORITY_RENDER_COUNT,
)
from opensmell.search import (
    RecentSearches,
    SearchMode,
    parse_search_mode,
    run_search,
)

# ==============================================================================
# Configuration
# ==============================================================================

BASE_DIR = Path(__file__).parent.absolute()
ODOR_INDEX_PATH = Path(os.getenv("ODOR_INDEX_PATH", str(odor_index.DEFAULT_INDEX_PATH)))
LOG_LEVEL = os.getenv("OPENSMELL_LOG_LEVEL", "INFO").upper()
DEFAULT_PAGE_SIZE = int(os.getenv("OPENSMELL_PAGE_SIZE", str(DEFAULT_ITEMS_PER_PAGE)))
MAX_PAGE_SIZE = 200

CSV_COLUMNS = ["cid", "name", "smiles", "descriptors", "sources", "pubchem_url"]

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="OpenSmell Interface", version="1.0.0")

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

# ==============================================================================
# Shared State
# ==============================================================================

recent_searches = RecentSearches()

# Created lazily on the first structure request
structure_renderer = SharedRenderer(RDKitRenderer)


def get_structure_renderer() -> StructureRenderer:
    return structure_renderer


# ==============================================================================
# Response Models
# ==============================================================================

class ChemicalSummary(BaseModel):
    cid: int
    name: str
    smiles: str
    descriptors: List[str]
    sources: List[str]
    pubchem_url: str

    @classmethod
    def from_record(cls, record: ChemicalRecord) -> 'ChemicalSummary':
        return cls(pubchem_url=record.pubchem_url, **record.to_dict())


class SearchResponse(BaseModel):
    query: str
    type: str
    results: List[ChemicalSummary]
    visible_count: int
    result_count: int
    total_matches: int
    truncated: bool
    notice: Optional[str] = None
    has_more: bool
    next_batch_size: int


def _resolve_mode(search_type: Optional[str]) -> SearchMode:
    try:
        return parse_search_mode(search_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _paginate(results: List[ChemicalRecord], pages: int, per_page: int) -> ResultPaginator:
    paginator = ResultPaginator(results, items_per_page=per_page)
    for _ in range(pages - 1):
        if not paginator.has_more:
            break
        paginator.reveal_more()
    return paginator


def _lookup_or_404(cid: int) -> ChemicalRecord:
    record = odor_index.get_chemical_by_cid(cid)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Chemical CID_{cid} not found in the odor index")
    return record


# ==============================================================================
# API Endpoints - Pages
# ==============================================================================

@app.get("/", response_class=HTMLResponse)
async def read_root(request: Request):
    index = odor_index.get_index()
    stats = index.descriptor_stats(top_n=12)
    return templates.TemplateResponse(request, "index.html", {
        "chemical_count": len(index),
        "descriptor_count": stats["total_descriptors"],
        "top_descriptors": stats["top_descriptors"],
        "recent_searches": recent_searches.list(),
    })


# ==============================================================================
# API Endpoints - Search
# ==============================================================================

@app.get("/api/search", response_model=SearchResponse)
async def search(
    q: str = "",
    search_type: Optional[str] = Query(None, alias="type"),
    pages: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
):
    """
    Search by odor descriptors (type=odor, comma separated) or by
    chemical name, CID, or SMILES (type=chemical).

    ``pages`` is the number of batches revealed so far.
    """
    mode = _resolve_mode(search_type)
    outcome = run_search(mode, q)
    recent_searches.record(q, mode)

    paginator = _paginate(outcome.results, pages, per_page)
    return SearchResponse(
        query=q,
        type=mode.value,
        results=[ChemicalSummary.from_record(r) for r in paginator.visible_slice()],
        visible_count=paginator.visible_count,
        result_count=outcome.result_count,
        total_matches=outcome.total_matches,
        truncated=outcome.truncated,
        notice=outcome.notice,
        has_more=paginator.has_more,
        next_batch_size=paginator.next_batch_size,
    )


@app.get("/api/search/export.csv")
async def export_search(q: str = "", search_type: Optional[str] = Query(None, alias="type")):
    """Search results as a CSV table."""
    mode = _resolve_mode(search_type)
    outcome = run_search(mode, q)

    rows = []
    for record in outcome.results:
        rows.append({
            "cid": record.cid,
            "name": record.name,
            "smiles": record.smiles,
            "descriptors": "; ".join(record.descriptors),
            "sources": "; ".join(record.sources),
            "pubchem_url": record.pubchem_url,
        })
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)

    return Response(
        content=df.to_csv(index=False),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="opensmell_{mode.value}_search.csv"'},
    )


@app.get("/api/search/renders")
async def render_search_structures(
    q: str = "",
    search_type: Optional[str] = Query(None, alias="type"),
    pages: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    priority_only: bool = True,
    renderer: StructureRenderer = Depends(get_structure_renderer),
):
    """
    Render structures for the visible part of a search.

    By default only the first few visible records are drawn; the rest are
    reported as idle. One failed drawing never affects the others.
    """
    mode = _resolve_mode(search_type)
    outcome = run_search(mode, q)
    paginator = _paginate(outcome.results, pages, per_page)

    session = RenderSession(renderer, paginator.visible_slice(), priority_count=PRIORITY_RENDER_COUNT)
    if priority_only:
        await session.render_priority()
    else:
        await session.render_visible()

    items = session.states()
    return {
        "query": q,
        "type": mode.value,
        "renders": [item.to_dict() for item in items],
        "rendered": sum(1 for item in items if item.state == RenderState.RENDERED),
        "failed": sum(1 for item in items if item.state == RenderState.FAILED),
    }


@app.get("/api/searches/recent")
async def list_recent_searches():
    """Most recent searches, newest first."""
    return {"searches": [s.to_dict() for s in recent_searches.list()]}


# ==============================================================================
# API Endpoints - Chemicals
# ==============================================================================

@app.get("/api/chemicals")
async def list_chemicals():
    """List every chemical in the index."""
    chemicals = [ChemicalSummary.from_record(r) for r in odor_index.get_all_chemicals()]
    return {"chemicals": chemicals, "count": len(chemicals)}


@app.get("/api/chemicals/{cid}", response_model=ChemicalSummary)
async def get_chemical_detail(cid: int):
    """Get a chemical by PubChem CID."""
    return ChemicalSummary.from_record(_lookup_or_404(cid))


@app.get("/api/chemicals/{cid}/structure.svg")
async def get_structure_svg(
    cid: int,
    renderer: StructureRenderer = Depends(get_structure_renderer),
):
    """2D structure depiction of a chemical as SVG."""
    record = _lookup_or_404(cid)
    try:
        depiction = await renderer.render(record.smiles)
    except RenderError as e:
        logger.warning(f"Structure rendering failed for CID {cid}: {e}")
        raise HTTPException(status_code=422, detail=f"Could not render molecule: {e}")
    return Response(content=depiction.svg, media_type="image/svg+xml")


# ==============================================================================
# API Endpoints - Statistics
# ==============================================================================

@app.get("/api/descriptors/stats")
async def descriptor_statistics(top_n: int = Query(20, ge=1, le=500)):
    """Descriptor frequencies across the index."""
    return odor_index.get_descriptor_stats(top_n)


@app.get("/api/sources/stats")
async def source_statistics():
    """Number of chemicals citing each source."""
    sources = odor_index.get_index().source_stats()
    return {"sources": sources, "count": len(sources)}


# ==============================================================================
# Startup Events
# ==============================================================================

@app.on_event("startup")
async def startup_event():
    """Load the odor index. A broken dataset stops startup."""
    index = odor_index.load_index(ODOR_INDEX_PATH)
    logger.info("OpenSmell Web Interface started")
    logger.info(f"Odor index: {len(index)} chemicals from {ODOR_INDEX_PATH}")


# ==============================================================================
# Main Entry Point
# ==============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5005, log_level="info")
