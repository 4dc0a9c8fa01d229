from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from vobench.config import (
    AlgorithmParameters,
    DatasetConfig,
    HarnessConfig,
    load_config,
)


class TestAlgorithmParameters:

    def test_defaults(self):
        p = AlgorithmParameters()
        assert p.engine == "direct"
        assert p.num_pyramid_levels == 4
        assert p.max_test_level == 1
        assert p.max_iterations == 50

    def test_from_dict_round_trip(self):
        p = AlgorithmParameters.from_dict({'max_iterations': 20, 'huber_k': 2.0})
        assert p.max_iterations == 20
        assert AlgorithmParameters.from_dict(p.to_dict()) == p

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="max_iter"):
            AlgorithmParameters.from_dict({'max_iter': 20})

    @pytest.mark.parametrize("values", [
        {'num_pyramid_levels': 0},
        {'num_pyramid_levels': 2, 'max_test_level': 2},
        {'max_test_level': -1},
        {'max_iterations': 0},
        {'min_fraction_of_good_points': 1.5},
    ])
    def test_invalid(self, values):
        with pytest.raises(ValueError):
            AlgorithmParameters.from_dict(values)

    def test_frozen(self):
        p = AlgorithmParameters()
        with pytest.raises(FrozenInstanceError):
            p.max_iterations = 3


class TestDatasetConfig:

    def test_relative_root_resolved(self, tmp_path):
        cfg = DatasetConfig.from_dict({'root': 'data', 'sequence': 5}, base_dir=tmp_path)
        assert Path(cfg.root) == tmp_path / 'data'
        assert cfg.sequence == '5'

    def test_absolute_root_kept(self, tmp_path):
        cfg = DatasetConfig.from_dict({'root': str(tmp_path)}, base_dir=Path('/elsewhere'))
        assert Path(cfg.root) == tmp_path

    def test_intrinsics_and_disparity(self):
        cfg = DatasetConfig.from_dict({
            'type': 'stereo_folder',
            'intrinsics': {'fx': 100, 'fy': 100, 'cx': 50, 'cy': 40},
            'disparity': {'num_disparities': 64},
        })
        assert cfg.intrinsics_dict() == {'fx': 100.0, 'fy': 100.0, 'cx': 50.0, 'cy': 40.0}
        assert cfg.disparity.num_disparities == 64
        assert cfg.disparity.block_size == 5

    def test_invalid_stride(self):
        with pytest.raises(ValueError):
            DatasetConfig.from_dict({'stride': 0})


class TestLoadConfig:

    def test_load(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            "dataset:\n"
            "  type: kitti\n"
            "  root: kitti\n"
            "  sequence: '00'\n"
            "algorithm:\n"
            "  max_iterations: 25\n"
        )
        config = load_config(path)

        assert isinstance(config, HarnessConfig)
        assert config.algorithm.max_iterations == 25
        assert config.dataset.sequence == '00'
        assert Path(config.dataset.root) == tmp_path / 'kitti'
        assert config.source_path == str(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).algorithm == AlgorithmParameters()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_unknown_section(self, tmp_path):
        path = tmp_path / "extra.yaml"
        path.write_text("output: foo\n")
        with pytest.raises(ValueError, match="output"):
            load_config(path)

    def test_bundled_configs_parse(self):
        configs_dir = Path(__file__).parent.parent / "configs"
        for path in sorted(configs_dir.glob("*.yaml")):
            config = load_config(path)
            assert config.algorithm.max_test_level < config.algorithm.num_pyramid_levels
