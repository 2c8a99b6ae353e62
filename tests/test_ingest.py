"""
Tests for ebird_grids/ingest.py.

Uses small raw EBD-format files (see conftest.EBD_RECORDS) whose filter
counts are known: 10 raw rows, 9 after the category filter, 8 after the
species whitelist and 7 after collapsing the shared group checklist.
"""

import os

import pandas as pd
import pytest

from ebird_grids.ingest import (
    apply_species_whitelist,
    build_working_set,
    checklists_from_observations,
    collapse_group_checklists,
    group_representatives,
    read_observations,
    read_sampling_events,
    read_species_whitelist,
)

from conftest import CROW, SPARROW, _ebd_record, _sampling_record, _write_tsv


class TestReadObservations:

    def test_columns_renamed(self, ebd_file):
        obs, _ = read_observations(ebd_file)
        for col in ("species", "checklist_id", "longitude", "latitude",
                    "observation_date", "protocol_type", "group_identifier"):
            assert col in obs.columns
        assert "COMMON NAME" not in obs.columns

    def test_category_filter(self, ebd_file):
        obs, raw_total = read_observations(ebd_file)
        assert raw_total == 10
        assert len(obs) == 9
        assert "Corvus sp." not in set(obs["species"])

    def test_small_chunks_same_result(self, ebd_file):
        whole, _ = read_observations(ebd_file)
        chunked, total = read_observations(ebd_file, chunksize=3)
        assert total == 10
        pd.testing.assert_frame_equal(whole, chunked)

    def test_dates_parsed(self, ebd_file):
        obs, _ = read_observations(ebd_file)
        assert pd.api.types.is_datetime64_any_dtype(obs["observation_date"])

    def test_missing_file(self, tmp_dir):
        with pytest.raises(FileNotFoundError):
            read_observations(os.path.join(tmp_dir, "nope.txt"))

    def test_missing_required_column(self, tmp_dir):
        path = os.path.join(tmp_dir, "bad.txt")
        pd.DataFrame({"SCIENTIFIC NAME": [CROW]}).to_csv(path, sep="\t", index=False)
        with pytest.raises(KeyError, match="missing required"):
            read_observations(path)

    def test_group_identifier_optional(self, tmp_dir, ebd_file):
        df = pd.read_csv(ebd_file, sep="\t").drop(columns=["GROUP IDENTIFIER"])
        path = os.path.join(tmp_dir, "no_group.txt")
        df.to_csv(path, sep="\t", index=False)
        obs, _ = read_observations(path)
        assert obs["group_identifier"].isna().all()


class TestReadSamplingEvents:

    def test_one_row_per_checklist(self, sampling_file):
        chk = read_sampling_events(sampling_file)
        assert chk["checklist_id"].is_unique
        assert "S10" in set(chk["checklist_id"])
        assert "species" not in chk.columns


class TestSpeciesWhitelist:

    def test_read(self, species_list_file):
        assert read_species_whitelist(species_list_file) == {CROW, SPARROW}

    def test_missing_column(self, species_list_file):
        with pytest.raises(KeyError):
            read_species_whitelist(species_list_file, column="latin")

    def test_apply(self, ebd_file):
        obs, _ = read_observations(ebd_file)
        out = apply_species_whitelist(obs, {CROW, SPARROW})
        assert len(out) == 8
        assert set(out["species"]) == {CROW, SPARROW}


class TestCollapseGroupChecklists:

    def test_keeps_first_checklist_of_group(self):
        df = pd.DataFrame({
            "checklist_id": ["S8", "S7", "S8", "S1"],
            "group_identifier": ["G1", "G1", "G1", None],
            "species": [CROW, CROW, SPARROW, CROW],
        })
        out = collapse_group_checklists(df)
        assert set(out["checklist_id"]) == {"S1", "S7"}
        # Sparrow was only on the S8 copy; it moves to S7.
        assert len(out) == 3
        assert set(out.loc[out["checklist_id"] == "S7", "species"]) == {CROW, SPARROW}

    def test_follows_given_representatives(self):
        # The checklist table chose S7, but only S8 reported a species.
        obs = pd.DataFrame({
            "checklist_id": ["S8", "S1"],
            "group_identifier": ["G1", None],
            "species": [SPARROW, CROW],
        })
        reps = pd.Series({"G1": "S7"})
        out = collapse_group_checklists(obs, reps)
        assert list(out["checklist_id"]) == ["S7", "S1"]
        assert list(out["species"]) == [SPARROW, CROW]

    def test_group_missing_from_representatives_kept(self):
        obs = pd.DataFrame({
            "checklist_id": ["S9"],
            "group_identifier": ["G9"],
            "species": [CROW],
        })
        out = collapse_group_checklists(obs, pd.Series({"G1": "S7"}))
        assert list(out["checklist_id"]) == ["S9"]

    def test_checklist_table_keeps_representative_row(self):
        chk = pd.DataFrame({
            "checklist_id": ["S8", "S7"],
            "group_identifier": ["G1", "G1"],
            "duration_minutes": [30.0, 45.0],
        })
        out = collapse_group_checklists(chk)
        assert list(out["checklist_id"]) == ["S7"]
        assert out["duration_minutes"].iloc[0] == 45.0

    def test_representatives_smallest_id(self):
        chk = pd.DataFrame({
            "checklist_id": ["S8", "S7", "S3", "S1"],
            "group_identifier": ["G1", "G1", "G2", None],
        })
        reps = group_representatives(chk)
        assert reps.to_dict() == {"G1": "S7", "G2": "S3"}

    def test_no_groups_is_noop(self):
        df = pd.DataFrame({
            "checklist_id": ["S1", "S2"],
            "group_identifier": [None, None],
        })
        out = collapse_group_checklists(df)
        assert len(out) == 2

    def test_groups_independent(self):
        df = pd.DataFrame({
            "checklist_id": ["S1", "S2", "S3", "S4"],
            "group_identifier": ["G1", "G1", "G2", "G2"],
        })
        out = collapse_group_checklists(df)
        assert list(out["checklist_id"]) == ["S1", "S3"]


class TestChecklistsFromObservations:

    def test_dedup(self):
        obs = pd.DataFrame({
            "checklist_id": ["S1", "S1", "S2"],
            "species": [CROW, SPARROW, CROW],
            "longitude": [77.0, 77.0, 77.5],
            "latitude": [20.0, 20.0, 20.5],
        })
        chk = checklists_from_observations(obs)
        assert list(chk["checklist_id"]) == ["S1", "S2"]
        assert "species" not in chk.columns


class TestBuildWorkingSet:

    def test_filter_counts(self, ebd_file, species_list_file):
        obs, chk, counts = build_working_set(ebd_file, species_list_file)
        assert counts.raw_rows == 10
        assert counts.after_category == 9
        assert counts.after_whitelist == 8
        assert counts.after_group_collapse == 7
        assert len(obs) == 7

    def test_checklists_from_observations(self, ebd_file, species_list_file):
        _, chk, _ = build_working_set(ebd_file, species_list_file)
        assert set(chk["checklist_id"]) == {"S1", "S2", "S3", "S4", "S5", "S7"}

    def test_checklists_from_sampling_file(self, ebd_file, species_list_file,
                                           sampling_file):
        _, chk, _ = build_working_set(
            ebd_file, species_list_file, sampling_path=sampling_file,
        )
        # S10 reported nothing on the whitelist; S8 is a group copy of S7.
        assert set(chk["checklist_id"]) == {"S1", "S2", "S3", "S4", "S5", "S7", "S10"}

    def test_group_reports_survive_copy_choice(self, tmp_dir, species_list_file):
        # S7 holds only a spuh, so its one whitelisted report sits on S8.
        records = [
            _ebd_record("Passer sp.", "S7", 77.2, 19.5, "2018-01-01",
                        category="spuh", group="G1"),
            _ebd_record(SPARROW, "S8", 77.2, 19.5, "2018-01-01", group="G1"),
        ]
        ebd = _write_tsv(os.path.join(tmp_dir, "group_ebd.txt"), records)
        sampling = _write_tsv(
            os.path.join(tmp_dir, "group_sampling.txt"),
            [_sampling_record(r) for r in records],
        )
        obs, chk, _ = build_working_set(ebd, species_list_file, sampling_path=sampling)
        assert list(chk["checklist_id"]) == ["S7"]
        assert list(obs["checklist_id"]) == ["S7"]
        assert list(obs["species"]) == [SPARROW]
