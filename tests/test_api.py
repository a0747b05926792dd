"""
API tests for the OpenSmell Web Interface.

Author: OpenSmell Development Team
"""

import csv
import json
import io
import sys
import os

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient

from opensmell import main
from opensmell.chemdata import odor_index
from opensmell.chemdata.odor_index import OdorIndexError
from opensmell.main import app, get_structure_renderer, recent_searches
from opensmell.rendering import Depiction, HAS_RDKIT, RenderError

client = TestClient(app)


class StubRenderer:
    def __init__(self, fail=()):
        self.fail = set(fail)

    async def render(self, smiles):
        if smiles in self.fail:
            raise RenderError(f"Invalid SMILES: {smiles}")
        return Depiction(smiles=smiles, svg=f"<svg xmlns='http://www.w3.org/2000/svg'>{smiles}</svg>")


@pytest.fixture
def stub_renderer():
    renderer = StubRenderer()
    app.dependency_overrides[get_structure_renderer] = lambda: renderer
    yield renderer
    app.dependency_overrides.clear()


def test_read_main():
    """Test that the landing page renders."""
    response = client.get("/")
    assert response.status_code == 200
    assert "OpenSmell" in response.text


class TestSearchEndpoint:
    """Test GET /api/search"""

    def test_odor_search(self):
        """Test that odor search ANDs the comma separated terms."""
        response = client.get("/api/search", params={"type": "odor", "q": "citrus, fresh"})
        assert response.status_code == 200

        data = response.json()
        assert data["type"] == "odor"
        cids = [r["cid"] for r in data["results"]]
        assert 440917 in cids
        assert data["truncated"] is False
        assert data["notice"] is None
        for result in data["results"]:
            descriptors = " ".join(result["descriptors"]).lower()
            assert "citrus" in descriptors and "fresh" in descriptors

    def test_chemical_search_by_cid(self):
        """Test that a bare CID finds exactly that compound."""
        response = client.get("/api/search", params={"type": "chemical", "q": "440917"})
        data = response.json()
        assert [r["cid"] for r in data["results"]] == [440917]
        assert data["results"][0]["pubchem_url"] == "https://pubchem.ncbi.nlm.nih.gov/compound/440917"

    def test_default_type_is_chemical(self):
        """Test that a missing type falls back to chemical search."""
        data = client.get("/api/search", params={"q": "vanillin"}).json()
        assert data["type"] == "chemical"
        assert data["results"][0]["name"] == "vanillin"

    @pytest.mark.parametrize("search_type", ["odor", "chemical"])
    def test_empty_query(self, search_type):
        """Test that an empty query returns no results."""
        response = client.get("/api/search", params={"type": search_type, "q": ""})
        assert response.status_code == 200
        data = response.json()
        assert data["results"] == []
        assert data["total_matches"] == 0

    def test_unknown_type(self):
        """Test that an unknown search type is rejected."""
        response = client.get("/api/search", params={"type": "flavor", "q": "citrus"})
        assert response.status_code == 400

    def test_batch_reveal(self):
        """Test that each page extends the previous window."""
        first = client.get("/api/search", params={"type": "odor", "q": "sweet", "per_page": 5}).json()
        assert first["visible_count"] == 5
        assert len(first["results"]) == 5
        assert first["result_count"] > 5
        assert first["has_more"] is True

        second = client.get("/api/search", params={"type": "odor", "q": "sweet", "per_page": 5, "pages": 2}).json()
        assert second["visible_count"] == min(10, second["result_count"])
        assert second["results"][:5] == first["results"]

    def test_reveal_past_end(self):
        """Test that revealing past the end shows every result."""
        data = client.get("/api/search", params={"type": "odor", "q": "sweet", "per_page": 5, "pages": 100}).json()
        assert data["visible_count"] == data["result_count"]
        assert data["has_more"] is False
        assert data["next_batch_size"] == 0

    def test_search_recorded(self):
        """Test that non-empty searches are recorded."""
        recent_searches.clear()
        client.get("/api/search", params={"type": "odor", "q": "woody"})
        client.get("/api/search", params={"type": "odor", "q": ""})
        searches = client.get("/api/searches/recent").json()["searches"]
        assert [(s["query"], s["type"]) for s in searches] == [("woody", "odor")]


class TestExportEndpoint:
    """Test GET /api/search/export.csv"""

    def test_csv_export(self):
        """Test that results export as CSV rows."""
        response = client.get("/api/search/export.csv", params={"type": "odor", "q": "vanilla"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")

        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert {row["cid"] for row in rows} >= {"1183", "8467"}
        assert rows[0]["pubchem_url"].startswith("https://pubchem.ncbi.nlm.nih.gov/compound/")

    def test_csv_export_empty(self):
        """Test that an empty search exports only the header."""
        response = client.get("/api/search/export.csv", params={"type": "odor", "q": ""})
        assert response.status_code == 200
        assert response.text.strip() == "cid,name,smiles,descriptors,sources,pubchem_url"


class TestChemicalEndpoints:
    """Test chemical detail endpoints."""

    def test_list_chemicals(self):
        """Test listing every chemical."""
        data = client.get("/api/chemicals").json()
        assert data["count"] == len(data["chemicals"])
        assert data["count"] >= 30

    def test_chemical_detail(self):
        """Test getting a chemical by CID."""
        response = client.get("/api/chemicals/1183")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "vanillin"
        assert "vanilla" in data["descriptors"]

    def test_chemical_not_found(self):
        """Test that an unknown CID returns 404."""
        response = client.get("/api/chemicals/999999999")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    def test_structure_svg(self, stub_renderer):
        """Test that a structure is served as SVG."""
        response = client.get("/api/chemicals/1183/structure.svg")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert "COC1=C(C=CC(=C1)C=O)O" in response.text

    def test_structure_render_failure(self, stub_renderer):
        """Test that a render failure returns 422."""
        stub_renderer.fail.add("COC1=C(C=CC(=C1)C=O)O")
        response = client.get("/api/chemicals/1183/structure.svg")
        assert response.status_code == 422
        assert "Could not render molecule" in response.json()["detail"]

    def test_structure_not_found(self, stub_renderer):
        """Test that an unknown CID has no structure."""
        response = client.get("/api/chemicals/999999999/structure.svg")
        assert response.status_code == 404

    @pytest.mark.skipif(not HAS_RDKIT, reason="RDKit not available")
    def test_structure_svg_rdkit(self):
        """Test drawing a real structure with RDKit."""
        response = client.get("/api/chemicals/240/structure.svg")
        assert response.status_code == 200
        assert "<svg" in response.text


class TestRenderEndpoint:
    """Test GET /api/search/renders"""

    def test_priority_renders(self, stub_renderer):
        """Test that only the first visible records are drawn."""
        data = client.get("/api/search/renders", params={"type": "odor", "q": "sweet", "per_page": 10}).json()
        states = [r["state"] for r in data["renders"]]
        assert len(states) == 10
        assert states[:6] == ["rendered"] * 6
        assert states[6:] == ["idle"] * 4
        assert data["rendered"] == 6

    def test_failure_stays_local(self, stub_renderer):
        """Test that one failed drawing leaves the others rendered."""
        # vanillin is the first sweet record
        stub_renderer.fail.add("COC1=C(C=CC(=C1)C=O)O")
        data = client.get("/api/search/renders", params={
            "type": "odor", "q": "sweet", "per_page": 3, "priority_only": False,
        }).json()
        renders = data["renders"]
        assert renders[0]["cid"] == 1183
        assert renders[0]["state"] == "failed"
        assert all(r["state"] == "rendered" for r in renders[1:])
        assert data["failed"] == 1


class TestStatisticsEndpoints:
    """Test statistics endpoints."""

    def test_descriptor_stats(self):
        """Test descriptor statistics ordering."""
        data = client.get("/api/descriptors/stats", params={"top_n": 5}).json()
        assert len(data["top_descriptors"]) == 5
        counts = [d["count"] for d in data["top_descriptors"]]
        assert counts == sorted(counts, reverse=True)
        assert data["top_descriptors"][0]["descriptor"] == "sweet"

    def test_descriptor_stats_are_real(self):
        """Two calls report the same counts."""
        first = client.get("/api/descriptors/stats").json()
        second = client.get("/api/descriptors/stats").json()
        assert first == second

    def test_source_stats(self):
        """Test per-source record counts."""
        data = client.get("/api/sources/stats").json()
        assert data["sources"]["flavornet"] > 0
        assert data["count"] == len(data["sources"])


class TestStartup:
    """Test loading the configured dataset at startup."""

    @pytest.fixture(autouse=True)
    def restore_index(self, monkeypatch):
        # startup replaces the global index; put the previous one back afterwards
        monkeypatch.setattr(odor_index, "_index", odor_index._index)

    def test_configured_dataset_is_served(self, tmp_path, monkeypatch):
        """Test that startup loads the dataset at ODOR_INDEX_PATH."""
        path = tmp_path / "odors.json"
        path.write_text(json.dumps([
            {"cid": 7, "name": "test musk", "smiles": "CCO",
             "descriptors": ["musk"], "sources": ["arctander"]},
        ]))
        monkeypatch.setattr(main, "ODOR_INDEX_PATH", path)

        with TestClient(app) as startup_client:
            data = startup_client.get("/api/chemicals").json()
            assert data["count"] == 1
            assert data["chemicals"][0]["name"] == "test musk"
            assert startup_client.get("/api/chemicals/1183").status_code == 404

    def test_corrupt_dataset_stops_startup(self, tmp_path, monkeypatch):
        """Test that a malformed dataset stops the app from starting."""
        path = tmp_path / "odors.json"
        path.write_text(json.dumps([{"cid": 1}]))
        monkeypatch.setattr(main, "ODOR_INDEX_PATH", path)

        with pytest.raises(OdorIndexError):
            with TestClient(app):
                pass
