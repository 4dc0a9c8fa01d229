"""Stereo frames, file-backed sources and the disparity estimator."""

import cv2
import numpy as np
import pytest

from vobench.config import DatasetConfig
from vobench.pipeline import (
    KittiStereoSource,
    StereoDisparityEstimator,
    StereoFolderSource,
    StereoFrame,
    TsukubaStereoSource,
    create_frame_source,
)
from vobench.pose.base import StereoCalibration

from conftest import HEIGHT, WIDTH, make_textured_image


# ---- helpers ----

def write_pairs(left_dir, right_dir, n, shift=8):
    left_dir.mkdir(parents=True, exist_ok=True)
    right_dir.mkdir(parents=True, exist_ok=True)
    for i in range(n):
        left = make_textured_image(seed=i)
        right = np.roll(left, -shift, axis=1)
        cv2.imwrite(str(left_dir / f"{i:06d}.png"), left)
        cv2.imwrite(str(right_dir / f"{i:06d}.png"), right)


def make_kitti(root, n=5, with_poses=True):
    seq = root / "sequences" / "00"
    write_pairs(seq / "image_0", seq / "image_1", n)
    p0 = "200.0 0.0 80.0 0.0 0.0 200.0 60.0 0.0 0.0 0.0 1.0 0.0"
    p1 = "200.0 0.0 80.0 -100.0 0.0 200.0 60.0 0.0 0.0 0.0 1.0 0.0"
    (seq / "calib.txt").write_text(f"P0: {p0}\nP1: {p1}\n")
    (seq / "times.txt").write_text("".join(f"{0.1 * i:.6f}\n" for i in range(n)))
    if with_poses:
        (root / "poses").mkdir()
        lines = [f"1 0 0 {i} 0 1 0 0 0 0 1 0" for i in range(n)]
        (root / "poses" / "00.txt").write_text("\n".join(lines) + "\n")
    return seq


class TestStereoFrame:

    def test_copies_and_freezes(self):
        image = make_textured_image()
        disparity = np.ones(image.shape, np.float32)
        frame = StereoFrame(0, 0.0, image, disparity)

        image[0, 0] = 255 - image[0, 0]
        assert frame.image[0, 0] != image[0, 0]
        assert frame.image_size == (WIDTH, HEIGHT)
        with pytest.raises(ValueError):
            frame.disparity[0, 0] = 2.0

    def test_rejects_color_image(self):
        with pytest.raises(ValueError):
            StereoFrame(0, 0.0, np.zeros((4, 4, 3), np.uint8), np.zeros((4, 4), np.float32))

    def test_rejects_shape_mismatch(self):
        with pytest.raises(ValueError):
            StereoFrame(0, 0.0, np.zeros((4, 4), np.uint8), np.zeros((4, 5), np.float32))


class TestStereoFolderSource:

    def test_frames(self, tmp_path, calibration):
        write_pairs(tmp_path / "left", tmp_path / "right", 4)
        source = StereoFolderSource(str(tmp_path), calibration)

        assert len(source) == 4
        assert source.image_size == (WIDTH, HEIGHT)
        assert source.calibration == calibration

        frame = source.get_frame(2)
        assert frame.idx == 2
        assert frame.image.shape == (HEIGHT, WIDTH)
        assert frame.disparity.dtype == np.float32
        assert frame.metadata['raw_index'] == 2
        assert source.get_frame(4) is None
        assert source.get_frame(-1) is None

    def test_start_and_stride(self, tmp_path, calibration):
        write_pairs(tmp_path / "left", tmp_path / "right", 7)
        source = StereoFolderSource(str(tmp_path), calibration, start=1, stride=2)

        assert len(source) == 3
        assert [f.metadata['raw_index'] for f in source] == [1, 3, 5]

    def test_repeatable(self, tmp_path, calibration):
        write_pairs(tmp_path / "left", tmp_path / "right", 2)
        source = StereoFolderSource(str(tmp_path), calibration)
        a, b = source.get_frame(1), source.get_frame(1)
        assert a is not b
        np.testing.assert_array_equal(a.image, b.image)
        np.testing.assert_array_equal(a.disparity, b.disparity)

    def test_missing_folder(self, tmp_path, calibration):
        with pytest.raises(FileNotFoundError):
            StereoFolderSource(str(tmp_path), calibration)

    def test_unbalanced_pairs(self, tmp_path, calibration):
        write_pairs(tmp_path / "left", tmp_path / "right", 3)
        (tmp_path / "right" / "000002.png").unlink()
        with pytest.raises(ValueError):
            StereoFolderSource(str(tmp_path), calibration)

    def test_empty_folders(self, tmp_path, calibration):
        write_pairs(tmp_path / "left", tmp_path / "right", 0)
        with pytest.raises(FileNotFoundError, match="no images found"):
            StereoFolderSource(str(tmp_path), calibration)


class TestKittiStereoSource:

    def test_layout(self, tmp_path):
        make_kitti(tmp_path, n=5)
        source = KittiStereoSource(str(tmp_path), sequence="00")

        assert len(source) == 5
        assert source.calibration.fx == 200.0
        assert source.calibration.baseline == pytest.approx(0.5)
        assert source.get_frame(3).timestamp == pytest.approx(0.3)

    def test_ground_truth_follows_selection(self, tmp_path):
        make_kitti(tmp_path, n=6)
        source = KittiStereoSource(str(tmp_path), sequence="00", start=1, stride=2)
        gt = source.load_ground_truth()
        assert gt.shape == (3, 4, 4)
        assert gt[:, 0, 3].tolist() == [1.0, 3.0, 5.0]

    def test_no_ground_truth(self, tmp_path):
        make_kitti(tmp_path, n=2, with_poses=False)
        assert KittiStereoSource(str(tmp_path), sequence="00").load_ground_truth() is None

    def test_sequence_directory_as_root(self, tmp_path):
        seq = make_kitti(tmp_path, n=2)
        assert len(KittiStereoSource(str(seq))) == 2

    def test_missing_sequence(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            KittiStereoSource(str(tmp_path), sequence="07")

    def test_short_times_file(self, tmp_path):
        seq = make_kitti(tmp_path, n=5)
        (seq / "times.txt").write_text("0.0\n0.1\n0.2\n")
        with pytest.raises(ValueError, match="3 timestamps for 5 images"):
            KittiStereoSource(str(tmp_path), sequence="00")

    def test_missing_times_file(self, tmp_path):
        seq = make_kitti(tmp_path, n=3)
        (seq / "times.txt").unlink()
        source = KittiStereoSource(str(tmp_path), sequence="00")
        assert source.get_frame(2).timestamp == 2.0


class TestTsukubaStereoSource:

    def test_ground_truth_disparity(self, tmp_path):
        lighting = tmp_path / "illumination" / "fluorescent"
        write_pairs(lighting / "left", lighting / "right", 3)
        disp_dir = tmp_path / "groundtruth" / "disparity_maps" / "left"
        disp_dir.mkdir(parents=True)
        for i in range(3):
            cv2.imwrite(str(disp_dir / f"{i:06d}.png"), np.full((HEIGHT, WIDTH), 20, np.uint8))

        source = TsukubaStereoSource(str(tmp_path), use_ground_truth_disparity=True)
        frame = source.get_frame(0)
        assert source.calibration == TsukubaStereoSource.DEFAULT_CALIBRATION
        assert np.all(frame.disparity == 20.0)

    def test_no_ground_truth_track(self, tmp_path):
        lighting = tmp_path / "illumination" / "lamps"
        write_pairs(lighting / "left", lighting / "right", 2)
        (tmp_path / "groundtruth").mkdir()
        (tmp_path / "groundtruth" / "camera_track.txt").write_text("0 0 0 0 0 0\n0 0 1 0 0 0\n")

        source = TsukubaStereoSource(str(tmp_path), sequence="lamps")
        assert len(source) == 2
        assert source.load_ground_truth() is None

    def test_missing_lighting(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TsukubaStereoSource(str(tmp_path), sequence="daylight")


class TestCreateFrameSource:

    def test_stereo_folder(self, tmp_path):
        write_pairs(tmp_path / "cam0", tmp_path / "cam1", 2)
        config = DatasetConfig.from_dict({
            'type': 'stereo_folder',
            'root': str(tmp_path),
            'left_dir': 'cam0',
            'right_dir': 'cam1',
            'intrinsics': {'fx': 200, 'fy': 200, 'cx': 80, 'cy': 60},
            'baseline': 0.1,
            'disparity': {'num_disparities': 32},
        })
        source = create_frame_source(config)
        assert isinstance(source, StereoFolderSource)
        assert source.calibration == StereoCalibration(200.0, 200.0, 80.0, 60.0, 0.1)

    def test_stereo_folder_needs_calibration(self, tmp_path):
        write_pairs(tmp_path / "left", tmp_path / "right", 1)
        config = DatasetConfig.from_dict({'type': 'stereo_folder', 'root': str(tmp_path)})
        with pytest.raises(ValueError):
            create_frame_source(config)

    def test_kitti(self, tmp_path):
        make_kitti(tmp_path, n=2)
        config = DatasetConfig.from_dict({'type': 'KITTI', 'root': str(tmp_path), 'sequence': '00'})
        assert isinstance(create_frame_source(config), KittiStereoSource)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_frame_source(DatasetConfig(type='euroc'))


class TestStereoDisparityEstimator:

    def test_parameters_normalized(self):
        estimator = StereoDisparityEstimator(num_disparities=70, block_size=4)
        assert estimator.num_disparities == 64
        assert estimator.block_size == 5

    def test_compute(self):
        left = make_textured_image()
        right = np.roll(left, -8, axis=1)
        disparity = StereoDisparityEstimator(num_disparities=32).compute(left, right)

        assert disparity.shape == left.shape
        assert disparity.dtype == np.float32
        assert disparity.min() >= 0.0
        assert np.median(disparity[disparity > 0]) == pytest.approx(8.0, abs=1.0)

    def test_color_input(self):
        left = cv2.cvtColor(make_textured_image(), cv2.COLOR_GRAY2BGR)
        disparity = StereoDisparityEstimator(num_disparities=16).compute(left, left)
        assert disparity.shape == left.shape[:2]

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            StereoDisparityEstimator().compute(np.zeros((10, 10), np.uint8), np.zeros((10, 12), np.uint8))
