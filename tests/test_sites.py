# tests/test_sites.py
import json

import pytest

from modules.job_aggregator.lib.config import ConfigError
from modules.job_aggregator.lib.sites import (
    DEFAULT_SITES,
    SiteNotFoundError,
    SiteRegistry,
    SiteValidationError,
    validate_site,
)


def _site_dict(name="Acme", /, **over):
    data = {
        "name": name,
        "base_url": "https://acme.test/search?q=",
        "keywords": ["audio"],
        "selectors": {
            "container": ".job",
            "title": ".title",
            "company": ".company",
            "location": ".location",
            "link": "a",
        },
    }
    data.update(over)
    return data


@pytest.fixture
def registry(tmp_path):
    return SiteRegistry(str(tmp_path / "sites.json"))


def test_empty_registry_lists_nothing(registry):
    assert registry.list() == []


def test_missing_file_is_seeded_with_defaults(tmp_path):
    reg = SiteRegistry(str(tmp_path / "sites.json"), seed_defaults=True)

    sites = reg.list()

    assert [s.name for s in sites] == ["Indeed", "LinkedIn"]
    assert (tmp_path / "sites.json").exists()
    assert all(not s.problems() for s in DEFAULT_SITES)


def test_add_update_delete_round_trip(registry):
    registry.add(_site_dict("Acme"))
    registry.add(_site_dict("Beta", base_url="https://beta.test/?q="))

    updated = registry.update(0, _site_dict("Acme", keywords=["music", "sound design"]))
    assert updated.keywords == ("music", "sound design")

    removed = registry.delete(1)
    assert removed.name == "Beta"
    assert [s.name for s in registry.list()] == ["Acme"]
    assert registry.get(0).keywords == ("music", "sound design")


def test_file_is_a_whole_list_snapshot(registry, tmp_path):
    registry.add(_site_dict("Acme"))
    on_disk = json.loads((tmp_path / "sites.json").read_text(encoding="utf-8"))
    assert on_disk == [_site_dict("Acme")]


@pytest.mark.parametrize(
    "override, fragment",
    [
        ({"name": ""}, "'name' is required"),
        ({"base_url": ""}, "'base_url' is required"),
        ({"base_url": "acme.test"}, "http(s)"),
        ({"keywords": []}, "at least one"),
        ({"keywords": ["ok", " "]}, "empty search terms"),
        ({"selectors": {"container": ".job"}}, "'selectors.title' is required"),
    ],
)
def test_invalid_site_is_rejected_and_file_untouched(registry, tmp_path, override, fragment):
    registry.add(_site_dict("Acme"))
    before = (tmp_path / "sites.json").read_text(encoding="utf-8")

    with pytest.raises(SiteValidationError) as ei:
        registry.add(_site_dict("Other", **override))

    assert fragment in str(ei.value)
    assert (tmp_path / "sites.json").read_text(encoding="utf-8") == before


def test_duplicate_name_is_rejected_case_insensitively(registry):
    registry.add(_site_dict("Acme"))
    with pytest.raises(SiteValidationError, match="already exists"):
        registry.add(_site_dict("ACME"))


def test_update_may_keep_its_own_name(registry):
    registry.add(_site_dict("Acme"))
    registry.update(0, _site_dict("Acme", keywords=["other"]))
    assert registry.list()[0].keywords == ("other",)


@pytest.mark.parametrize("index", [5, -1, "x", None, True])
def test_bad_index_raises_not_found(registry, index):
    registry.add(_site_dict("Acme"))
    with pytest.raises(SiteNotFoundError):
        registry.update(index, _site_dict("Acme"))
    with pytest.raises(SiteNotFoundError):
        registry.delete(index)


def test_not_found_is_distinct_from_validation_error():
    assert not issubclass(SiteNotFoundError, ConfigError)
    assert issubclass(SiteValidationError, ConfigError)


def test_legacy_layout_is_loaded(tmp_path):
    path = tmp_path / "sites.json"
    path.write_text(
        json.dumps([
            {
                "name": "Old",
                "url": "https://old.test/jobs?q=",
                "searchTerms": ["music"],
                "selectors": {
                    "jobContainer": ".card",
                    "title": "h2",
                    "company": ".co",
                    "location": ".loc",
                    "link": "a",
                },
            }
        ]),
        encoding="utf-8",
    )
    [site] = SiteRegistry(str(path)).list()
    assert site.base_url == "https://old.test/jobs?q="
    assert site.keywords == ("music",)
    assert site.selectors.container == ".card"
    assert site.problems() == []


def test_validate_site_reports_every_problem():
    with pytest.raises(SiteValidationError) as ei:
        validate_site({"name": "", "base_url": "", "keywords": [], "selectors": {}})
    msg = str(ei.value)
    for fragment in ("'name'", "'base_url'", "'keywords'", "'selectors.container'", "'selectors.link'"):
        assert fragment in msg


def test_validate_site_rejects_non_object():
    with pytest.raises(SiteValidationError):
        validate_site(["not", "a", "dict"])
