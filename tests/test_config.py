"""Tests for run configuration and directory setup."""
from __future__ import annotations

import dataclasses
import json

import pytest

from sra2mothur.config import (
    ConfigError,
    RunConfig,
    init_directories,
    load_config,
    remove_old_output,
)


class TestFromDict:
    def test_defaults_resolve_under_base_dir(self, tmp_path):
        config = RunConfig.from_dict({}, base_dir=tmp_path)
        assert config.data_dir == tmp_path / "data"
        assert config.input_dir == tmp_path / "data" / "input"
        assert config.output_dir == tmp_path / "data" / "output"
        assert config.figures_dir == tmp_path / "figures"
        assert config.download_dir == tmp_path / "data" / "external"
        assert config.num_processors == 1
        assert config.merge_fan_out == 10

    def test_absolute_paths_kept(self, tmp_path):
        out = tmp_path / "elsewhere"
        config = RunConfig.from_dict({"output_dir": str(out)}, base_dir=tmp_path / "base")
        assert config.output_dir == out

    def test_run_clustering_alias(self, tmp_path):
        config = RunConfig.from_dict({"run_clustering": True}, base_dir=tmp_path)
        assert config.run_mothur is True

    def test_option_and_alias_together_raise(self, tmp_path):
        with pytest.raises(ConfigError, match="run_mothur given more than once"):
            RunConfig.from_dict({"run_mothur": False, "run_clustering": True}, base_dir=tmp_path)

    def test_unknown_option_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown configuration option"):
            RunConfig.from_dict({"make_coffee": True}, base_dir=tmp_path)

    def test_zero_processors_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="num_processors"):
            RunConfig.from_dict({"num_processors": 0}, base_dir=tmp_path)

    @pytest.mark.parametrize("option", ["num_processors", "merge_fan_out"])
    def test_bool_count_raises(self, tmp_path, option):
        with pytest.raises(ConfigError, match=option):
            RunConfig.from_dict({option: True}, base_dir=tmp_path)

    def test_small_fan_out_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="merge_fan_out"):
            RunConfig.from_dict({"merge_fan_out": 1}, base_dir=tmp_path)

    def test_get_new_data_needs_project(self, tmp_path):
        with pytest.raises(ConfigError, match="project_id"):
            RunConfig.from_dict({"get_new_data": True}, base_dir=tmp_path)

    def test_metadata_fields_from_mapping(self, tmp_path):
        config = RunConfig.from_dict(
            {"metadata_fields": {"fev1": "host_fev1", "sex": "host_sex"}},
            base_dir=tmp_path,
        )
        assert config.metadata_fields == (("fev1", "host_fev1"), ("sex", "host_sex"))


class TestImmutability:
    def test_fields_cannot_be_assigned(self, make_config):
        config = make_config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.num_processors = 4

    def test_with_overrides_returns_copy(self, make_config):
        config = make_config(num_processors=2)
        other = config.with_overrides(num_processors=8, run_clustering=True)
        assert config.num_processors == 2
        assert config.run_mothur is False
        assert other.num_processors == 8
        assert other.run_mothur is True

    def test_with_overrides_alias_conflict_raises(self, make_config):
        config = make_config()
        with pytest.raises(ConfigError, match="given more than once"):
            config.with_overrides(run_mothur=False, run_clustering=True)


class TestDerivedPaths:
    def test_project_files_in_data_dir(self, make_config):
        config = make_config(project_id="PRJNA42")
        assert config.accession_file.name == "PRJNA42_accessions.txt"
        assert config.sample_file.name == "PRJNA42_samples.txt"
        assert config.full_dataset_file.parent == config.data_dir
        assert config.metadata_xml_file.suffix == ".xml"
        assert config.field_file("fev1") == config.data_dir / "fev1.txt"

    def test_batch_and_log_in_output_dir(self, make_config):
        config = make_config()
        assert config.batch_file.parent == config.output_dir
        assert config.mothur_log.parent == config.output_dir


class TestLoadConfig:
    def test_reads_json_relative_to_file(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text(json.dumps({"project_id": "PRJNA7", "num_processors": 6}))
        config = load_config(path)
        assert config.project_id == "PRJNA7"
        assert config.num_processors == 6
        assert config.data_dir == tmp_path / "data"

    def test_overrides_win(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text(json.dumps({"num_processors": 6}))
        config = load_config(path, overrides={"num_processors": 3})
        assert config.num_processors == 3

    def test_bad_json_raises(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="Could not parse"):
            load_config(path)

    def test_non_object_raises(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError, match="JSON object"):
            load_config(path)


class TestDirectories:
    def test_init_creates_all(self, make_config):
        config = make_config()
        init_directories(config)
        assert all(d.is_dir() for d in config.directories)

    def test_init_is_idempotent(self, make_config):
        config = make_config()
        init_directories(config)
        (config.output_dir / "keep.txt").write_text("x")
        init_directories(config)
        assert (config.output_dir / "keep.txt").exists()

    def test_remove_old_output_wipes(self, make_config):
        config = make_config()
        init_directories(config)
        (config.output_dir / "old.fasta").write_text(">a\nACGT\n")
        (config.data_dir / "keep.txt").write_text("x")
        remove_old_output(config)
        assert config.output_dir.is_dir()
        assert list(config.output_dir.iterdir()) == []
        assert (config.data_dir / "keep.txt").exists()
