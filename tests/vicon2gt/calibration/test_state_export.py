"""Unit tests for the state CSV and the calibration report."""

import numpy as np
import pytest

from vicon2gt.calibration import CalibrationResult, KeyframeCatalog, read_state_csv, write_info_file, write_state_csv
from vicon2gt.calibration.export import STATE_HEADER, time_to_ns
from vicon2gt.coords.rotations import quat_exp
from vicon2gt.estimators import CALIB_ROTATION, CALIB_TRANSLATION, EUCLIDEAN, UNIT_QUATERNION, G, T, Values
from vicon2gt.sensors.types import NavState


def make_states(n: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    return [
        NavState(
            q=quat_exp(rng.uniform(-1.0, 1.0, 3)),
            bg=rng.normal(0.0, 0.01, 3),
            v=rng.normal(0.0, 1.0, 3),
            ba=rng.normal(0.0, 0.1, 3),
            p=rng.normal(0.0, 5.0, 3),
        )
        for _ in range(n)
    ]


def make_result(estimate_toff: bool) -> CalibrationResult:
    values = Values()
    values.insert(CALIB_ROTATION, quat_exp(np.array([0.0, 0.0, np.pi / 2])), UNIT_QUATERNION)
    values.insert(CALIB_TRANSLATION, np.array([0.1, -0.2, 0.3]), EUCLIDEAN)
    values.insert(G(0), np.array([0.0, 0.6, 8.0]), EUCLIDEAN)
    if estimate_toff:
        values.insert(T(0), np.array([0.0123456789]), EUCLIDEAN)
    catalog = KeyframeCatalog(times=(), indices=())
    return CalibrationResult(values=values, catalog=catalog, estimate_toff=estimate_toff)


class TestStateCsv:
    def test_round_trip(self, tmp_path):
        times = [1.25, 1.5, 1.75]
        states = make_states(3)
        path = write_state_csv(tmp_path / "states.csv", times, states)

        times_ns, loaded = read_state_csv(path)
        assert times_ns.dtype == np.int64
        assert times_ns.tolist() == [1_250_000_000, 1_500_000_000, 1_750_000_000]
        for expected, got in zip(states, loaded):
            for name in ("p", "v", "bg", "ba"):
                np.testing.assert_allclose(getattr(got, name), getattr(expected, name), rtol=1e-5, atol=1e-5)
            np.testing.assert_allclose(got.q, expected.q, rtol=1e-5, atol=1e-5)

    def test_layout(self, tmp_path):
        path = write_state_csv(tmp_path / "states.csv", [0.1], make_states(1))
        lines = path.read_text().splitlines()
        assert lines[0] == STATE_HEADER
        assert len(lines) == 2
        assert len(lines[1].split(",")) == 17

    def test_time_is_floored(self):
        assert time_to_ns(1.0) == 1_000_000_000
        assert time_to_ns(1.9999999999) == 1_999_999_999
        assert time_to_ns(0.0) == 0

    def test_replaces_file_and_creates_parents(self, tmp_path):
        path = tmp_path / "nested" / "out" / "states.csv"
        write_state_csv(path, [0.0, 1.0], make_states(2))
        write_state_csv(path, [2.0], make_states(1))
        times_ns, states = read_state_csv(path)
        assert times_ns.tolist() == [2_000_000_000]
        assert len(states) == 1

    def test_length_mismatch(self, tmp_path):
        with pytest.raises(ValueError):
            write_state_csv(tmp_path / "states.csv", [0.0, 1.0], make_states(1))

    def test_epoch_timestamps_stay_exact(self, tmp_path):
        t = 1_700_000_000.125
        path = write_state_csv(tmp_path / "states.csv", [t], make_states(1))
        assert path.read_text().splitlines()[1].startswith(str(time_to_ns(t)) + ",")
        times_ns, _ = read_state_csv(path)
        assert times_ns.tolist() == [time_to_ns(t)]

        # beyond float64 resolution
        row = "1700000000123456789," + ",".join(["0"] * 3 + ["1"] + ["0"] * 12)
        path.write_text(STATE_HEADER + "\n" + row + "\n")
        times_ns, states = read_state_csv(path)
        assert times_ns.tolist() == [1_700_000_000_123_456_789]
        np.testing.assert_array_equal(states[0].q, [1.0, 0.0, 0.0, 0.0])

    def test_single_row_and_empty_file(self, tmp_path):
        path = write_state_csv(tmp_path / "states.csv", [0.5], make_states(1))
        times_ns, states = read_state_csv(path)
        assert times_ns.shape == (1,)
        assert len(states) == 1

        path = write_state_csv(tmp_path / "empty.csv", [], [])
        assert path.read_text().splitlines() == [STATE_HEADER]

    def test_rejects_wrong_column_count(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text(STATE_HEADER + "\n0,1,2,3\n")
        with pytest.raises(ValueError):
            read_state_csv(path)


class TestInfoFile:
    def test_sections(self, tmp_path):
        path = write_info_file(tmp_path / "info.txt", make_result(estimate_toff=True))
        text = path.read_text()
        for section in (
            "R_BtoI:",
            "q_BtoI (qw, qx, qy, qz):",
            "p_BinI:",
            "gravity:",
            "gravity norm:",
            "t_off_vicon_to_imu:",
        ):
            assert section in text
        lines = text.splitlines()
        assert lines[lines.index("gravity norm:") + 1] == "8.022468"
        assert lines[lines.index("t_off_vicon_to_imu:") + 1] == "0.012345679"
        rows = [np.array(lines[i].split(), dtype=float) for i in (1, 2, 3)]
        np.testing.assert_allclose(np.array(rows), [[0, -1, 0], [1, 0, 0], [0, 0, 1]], atol=1e-6)

    def test_offset_defaults_to_zero(self, tmp_path):
        text = write_info_file(tmp_path / "info.txt", make_result(estimate_toff=False)).read_text()
        lines = text.splitlines()
        assert lines[lines.index("t_off_vicon_to_imu:") + 1] == "0.000000000"
