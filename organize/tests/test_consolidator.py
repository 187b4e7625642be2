"""Tests for merging and relocating brand category files."""

import errno
import json
from unittest.mock import patch

import pytest

from organize.config import BRANDS, MERGED_FILENAME
from organize.consolidator import (
    BrandConsolidator,
    consolidate,
    consolidate_brand,
    dedupe_records,
    discover_files,
    make_matcher,
    remerge_brand,
)
from organize.models import BrandConfig, RelocationStatus


def write_json_file(path, data):
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return path


def read_json_file(path):
    return json.loads(path.read_text(encoding="utf-8"))


class TestAcmeExample:
    """The two-file example: sofas + chairs merged into acme/products.json."""

    def test_merges_and_relocates(self, acme_files, acme_config):
        result = consolidate_brand(acme_config, acme_files)
        brand_dir = acme_files / "acme"

        catalog = read_json_file(brand_dir / MERGED_FILENAME)
        assert len(catalog) == 2
        assert result.merged_count == 2
        assert result.moved_count == 2

        assert (brand_dir / "acme-sofas.json").exists()
        assert (brand_dir / "acme-chairs.json").exists()
        assert not (acme_files / "acme-sofas.json").exists()
        assert not (acme_files / "acme-chairs.json").exists()

    def test_other_brand_untouched(self, acme_files, acme_config):
        consolidate_brand(acme_config, acme_files)
        assert (acme_files / "other-tables.json").exists()

    def test_records_pass_through_unchanged(self, acme_files, acme_config):
        consolidate_brand(acme_config, acme_files)
        catalog = read_json_file(acme_files / "acme" / MERGED_FILENAME)
        # sorted listing: chairs before sofas
        assert catalog == [{"title": "Y", "price": 100}, {"title": "X"}]

    def test_catalog_is_indented_utf8(self, data_dir):
        write_json_file(data_dir / "acme-beds.json", [{"title": "침대"}])
        config = BrandConfig(key="acme", name="acme", pattern=r"^acme-.*\.json$")
        consolidate_brand(config, data_dir)

        text = (data_dir / "acme" / MERGED_FILENAME).read_text(encoding="utf-8")
        assert "침대" in text
        assert '\n  {\n    "title"' in text


class TestMergeOrderAndCounts:

    def test_total_is_sum_of_file_counts(self, data_dir):
        sizes = {"a": 3, "b": 0, "c": 5, "d": 1}
        for name, size in sizes.items():
            write_json_file(
                data_dir / f"acme-{name}.json",
                [{"file": name, "i": i} for i in range(size)],
            )

        result = consolidate(data_dir, data_dir / "acme", make_matcher(
            BrandConfig(key="acme", name="acme", pattern=r"^acme-.*\.json$")
        ))

        catalog = read_json_file(data_dir / "acme" / MERGED_FILENAME)
        assert len(catalog) == sum(sizes.values()) == result.merged_count
        assert [(r["file"], r["i"]) for r in catalog] == [
            (name, i) for name in sorted(sizes) for i in range(sizes[name])
        ]

    def test_no_files_writes_empty_catalog(self, data_dir, acme_config):
        result = consolidate_brand(acme_config, data_dir)
        assert read_json_file(data_dir / "acme" / MERGED_FILENAME) == []
        assert result.merged_count == 0
        assert result.catalog_written

    def test_existing_catalog_is_overwritten(self, acme_files, acme_config):
        brand_dir = acme_files / "acme"
        brand_dir.mkdir()
        write_json_file(brand_dir / MERGED_FILENAME, [{"stale": True}] * 10)

        consolidate_brand(acme_config, acme_files)
        catalog = read_json_file(brand_dir / MERGED_FILENAME)
        assert len(catalog) == 2
        assert {"stale": True} not in catalog

    def test_brand_dir_created_with_parents(self, acme_files):
        brand_dir = acme_files / "nested" / "acme"
        consolidate(acme_files, brand_dir, lambda name: name.startswith("acme-"))
        assert (brand_dir / MERGED_FILENAME).exists()


class TestFaultIsolation:

    def test_invalid_json_is_skipped(self, data_dir, acme_config):
        (data_dir / "acme-broken.json").write_text("[{not json", encoding="utf-8")
        write_json_file(data_dir / "acme-good.json", [{"title": "ok"}])

        result = consolidate_brand(acme_config, data_dir)

        catalog = read_json_file(data_dir / "acme" / MERGED_FILENAME)
        assert catalog == [{"title": "ok"}]
        assert result.failed_files == ["acme-broken.json"]
        assert not result.ok
        # left in place so it can be fixed
        assert (data_dir / "acme-broken.json").exists()
        assert (data_dir / "acme" / "acme-good.json").exists()

    def test_invalid_json_logs_filename(self, data_dir, acme_config, caplog):
        (data_dir / "acme-broken.json").write_text("{", encoding="utf-8")
        with caplog.at_level("ERROR", logger="organize"):
            consolidate_brand(acme_config, data_dir)
        assert any("acme-broken.json" in r.getMessage() for r in caplog.records)

    def test_non_array_contributes_zero_records(self, data_dir, acme_config, caplog):
        write_json_file(data_dir / "acme-meta.json", {"total": 3})
        write_json_file(data_dir / "acme-desks.json", [{"title": "desk"}])

        with caplog.at_level("WARNING", logger="organize"):
            result = consolidate_brand(acme_config, data_dir)

        assert result.merged_count == 1
        assert result.ok
        outcome = next(f for f in result.files if f.filename == "acme-meta.json")
        assert outcome.not_array
        assert outcome.records == 0
        assert any("not an array" in r.getMessage() for r in caplog.records)
        assert (data_dir / "acme" / "acme-meta.json").exists()


class TestIdempotence:

    def test_second_run_keeps_catalog(self, acme_files, acme_config):
        first = consolidate_brand(acme_config, acme_files)
        second = consolidate_brand(acme_config, acme_files)

        catalog = read_json_file(acme_files / "acme" / MERGED_FILENAME)
        assert len(catalog) == first.merged_count == second.merged_count == 2
        assert not second.catalog_written
        assert second.moved_count == 0

    def test_rescan_brand_does_not_duplicate(self, data_dir):
        config = BRANDS["jangin"]
        write_json_file(data_dir / "jangin-sofa.json", [{"title": "a"}, {"title": "b"}])
        write_json_file(data_dir / "jangin-bed.json", [{"title": "c"}])

        first = consolidate_brand(config, data_dir)
        assert first.merged_count == 3

        second = consolidate_brand(config, data_dir)
        assert second.merged_count == 3
        assert len(read_json_file(data_dir / "장인가구" / MERGED_FILENAME)) == 3

    def test_rescan_merges_archived_and_new_files(self, data_dir):
        config = BRANDS["jangin"]
        brand_dir = data_dir / "장인가구"
        brand_dir.mkdir()
        write_json_file(brand_dir / "jangin-old.json", [{"title": "old"}])
        write_json_file(data_dir / "jangin-new.json", [{"title": "new"}])

        result = consolidate_brand(config, data_dir)

        titles = [r["title"] for r in read_json_file(brand_dir / MERGED_FILENAME)]
        assert titles == ["new", "old"]
        assert result.moved_count == 1

    def test_newer_source_file_replaces_archived_copy(self, data_dir):
        config = BRANDS["jangin"]
        brand_dir = data_dir / "장인가구"
        brand_dir.mkdir()
        write_json_file(brand_dir / "jangin-sofa.json", [{"title": "v1"}])
        write_json_file(data_dir / "jangin-sofa.json", [{"title": "v2"}])

        consolidate_brand(config, data_dir)

        assert read_json_file(brand_dir / MERGED_FILENAME) == [{"title": "v2"}]
        assert read_json_file(brand_dir / "jangin-sofa.json") == [{"title": "v2"}]

    def test_broken_source_keeps_archived_copy_merged(self, data_dir):
        config = BRANDS["jangin"]
        brand_dir = data_dir / "장인가구"
        write_json_file(data_dir / "jangin-sofa.json", [{"title": "a"}, {"title": "b"}])
        consolidate_brand(config, data_dir)

        (data_dir / "jangin-sofa.json").write_text('[{"title": "a"', encoding="utf-8")
        second = consolidate_brand(config, data_dir)

        assert second.merged_count == 2
        assert read_json_file(brand_dir / MERGED_FILENAME) == [{"title": "a"}, {"title": "b"}]
        assert second.failed_files == ["jangin-sofa.json"]
        assert (data_dir / "jangin-sofa.json").exists()

    def test_all_sources_broken_keeps_catalog(self, acme_files, acme_config):
        consolidate_brand(acme_config, acme_files)
        (acme_files / "acme-sofas.json").write_text("[{", encoding="utf-8")

        second = consolidate_brand(acme_config, acme_files)

        assert not second.catalog_written
        assert second.merged_count == 2
        assert second.failed_files == ["acme-sofas.json"]
        assert len(read_json_file(acme_files / "acme" / MERGED_FILENAME)) == 2


class TestBrandVariants:

    def test_iloom_deny_list(self, data_dir):
        write_json_file(data_dir / "iloom-bedroom.json", [{"title": "bed"}])
        write_json_file(data_dir / "iloom-products-xhr.json", [{"raw": 1}])
        write_json_file(data_dir / "iloom-products-multi.json", [{"raw": 2}])

        result = consolidate_brand(BRANDS["iloom"], data_dir)

        assert result.merged_count == 1
        assert (data_dir / "iloom-products-xhr.json").exists()
        assert (data_dir / "iloom-products-multi.json").exists()
        catalog = read_json_file(data_dir / "일룸" / MERGED_FILENAME)
        assert catalog == [{"title": "bed", "source": "iloom"}]

    def test_alloso_normalizes_records(self, data_dir):
        write_json_file(data_dir / "alloso-sofa.json", [
            {"title": "Sofa", "productUrl": "https://alloso.example/p/1", "extra": "dropped"},
        ])

        consolidate_brand(BRANDS["alloso"], data_dir)

        (record,) = read_json_file(data_dir / "알로소" / MERGED_FILENAME)
        assert record["source"] == "alloso"
        assert record["brand"] == "알로소"
        assert record["category"] == "sofa"
        assert record["price"] is None
        assert record["imageUrl"] is None
        assert record["productUrl"] == "https://alloso.example/p/1"
        assert record["capturedAt"].endswith("Z")
        assert "extra" not in record

    def test_wooami_reformats_relocated_files(self, data_dir):
        (data_dir / "Wooami-Sofa.json").write_text('[{"title":"a"}]', encoding="utf-8")

        result = consolidate_brand(BRANDS["wooami"], data_dir)

        relocated = data_dir / "우아미" / "Wooami-Sofa.json"
        assert relocated.read_text(encoding="utf-8") == '[\n  {\n    "title": "a"\n  }\n]'
        assert not (data_dir / "Wooami-Sofa.json").exists()
        assert result.files[0].relocation.status is RelocationStatus.REWRITTEN
        assert result.moved_count == 1

    def test_products_json_never_matched(self, data_dir):
        match = make_matcher(BrandConfig(key="x", name="x", pattern=r".*\.json$"))
        assert not match(MERGED_FILENAME)
        assert match("x-a.json")


class TestRelocationFallback:

    def test_cross_device_move_falls_back_to_copy(self, acme_files, acme_config):
        cross_device = OSError(errno.EXDEV, "Invalid cross-device link")
        with patch("organize.relocate.os.replace", side_effect=cross_device):
            result = consolidate_brand(acme_config, acme_files)

        statuses = {f.relocation.status for f in result.files}
        assert statuses == {RelocationStatus.COPIED}
        assert result.moved_count == 2
        assert not (acme_files / "acme-sofas.json").exists()
        assert (acme_files / "acme" / "acme-sofas.json").exists()

    def test_failed_relocation_keeps_file_and_records(self, acme_files, acme_config):
        with patch("organize.relocate.os.replace", side_effect=OSError("rename failed")), \
                patch("organize.relocate.shutil.copy2", side_effect=PermissionError("denied")):
            result = consolidate_brand(acme_config, acme_files)

        assert result.merged_count == 2
        assert result.moved_count == 0
        assert sorted(result.failed_files) == ["acme-chairs.json", "acme-sofas.json"]
        assert (acme_files / "acme-sofas.json").exists()
        assert len(read_json_file(acme_files / "acme" / MERGED_FILENAME)) == 2


class TestDedupe:

    def test_dedupe_keeps_first(self):
        records = [
            {"productUrl": "a", "n": 1},
            {"productUrl": "b", "n": 2},
            {"productUrl": "a", "n": 3},
            {"n": 4},
            {"productUrl": None, "n": 5},
        ]
        assert [r["n"] for r in dedupe_records(records, "productUrl")] == [1, 2, 4, 5]

    def test_consolidate_with_dedupe_key(self, data_dir, acme_config):
        write_json_file(data_dir / "acme-a.json", [{"productUrl": "u1"}, {"productUrl": "u2"}])
        write_json_file(data_dir / "acme-b.json", [{"productUrl": "u1"}])

        result = consolidate_brand(acme_config, data_dir, dedupe_key="productUrl")
        assert result.merged_count == 2


class TestRemerge:

    def test_remerge_reads_brand_dir_only(self, data_dir):
        brand_dir = data_dir / "우아미"
        brand_dir.mkdir()
        write_json_file(brand_dir / "wooami-sofa.json", [
            {"title": "a", "detailImages": ["x.jpg"]},
            {"title": "b"},
        ])
        write_json_file(brand_dir / "wooami-bed.json", [{"title": "c"}])
        write_json_file(data_dir / "wooami-new.json", [{"title": "not yet moved"}])

        result = remerge_brand(BRANDS["wooami"], data_dir)

        assert result.merged_count == 3
        assert result.moved_count == 0
        assert (data_dir / "wooami-new.json").exists()
        titles = [r["title"] for r in read_json_file(brand_dir / MERGED_FILENAME)]
        assert titles == ["c", "a", "b"]

    def test_missing_brand_dir_writes_nothing(self, data_dir):
        result = remerge_brand(BRANDS["alloso"], data_dir)

        assert result.merged_count == 0
        assert not result.catalog_written
        assert not (data_dir / "알로소").exists()


class TestDiscovery:

    def test_skips_directories_and_catalog(self, data_dir):
        (data_dir / "acme-dir.json").mkdir()
        write_json_file(data_dir / "acme-a.json", [])
        write_json_file(data_dir / MERGED_FILENAME, [])

        found = discover_files(data_dir, lambda name: True)
        assert [p.name for p in found] == ["acme-a.json"]

    def test_missing_source_dir_raises(self, tmp_path):
        consolidator = BrandConsolidator(
            tmp_path / "missing", tmp_path / "out", lambda name: True
        )
        with pytest.raises(FileNotFoundError):
            consolidator.run()
