"""Command-line entry point: estimate IMU ground truth from a mocap recording.

Dataset directory layout (CSV files, '#' header lines are skipped):
    imu.csv        t,wx,wy,wz,ax,ay,az
    vicon.csv      t,px,py,pz,qw,qx,qy,qz
    keyframes.csv  t
    config.json    optional CalibrationConfig options, including the IMU
                   noise densities and the mocap pose sigmas

Outputs (default <dataset>/output/):
    states.csv     estimated keyframe states
    info.txt       calibration, gravity and time offset report
    states.svg     trajectory and bias plot (with --plot)

Usage:
    vicon2gt data/sim/vicon_imu_basic --log INFO --plot
"""

import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from vicon2gt.calibration.export import write_info_file, write_state_csv
from vicon2gt.calibration.solver import CalibrationResult, ViconGraphSolver
from vicon2gt.config import CalibrationConfig
from vicon2gt.errors import Vicon2GTError
from vicon2gt.sensors.interpolator import PoseInterpolator
from vicon2gt.sensors.propagator import ImuPropagator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s]: %(message)s"


def _load_csv(path: Path, columns: int) -> np.ndarray:
    data = np.loadtxt(path, delimiter=",", comments="#", ndmin=2)
    if data.shape[1] != columns:
        raise ValueError(f"{path} must have {columns} columns, got {data.shape[1]}")
    return data


def load_dataset(data_dir: Path) -> Dict[str, np.ndarray]:
    """
    Load the IMU, mocap and keyframe streams of a dataset directory.

    Returns:
        Dictionary with 't_imu', 'gyro', 'accel', 't_vicon',
        'vicon_positions', 'vicon_quaternions' and 'keyframes'.
    """
    imu = _load_csv(data_dir / "imu.csv", 7)
    vicon = _load_csv(data_dir / "vicon.csv", 8)
    keyframes = _load_csv(data_dir / "keyframes.csv", 1)
    return {
        "t_imu": imu[:, 0],
        "gyro": imu[:, 1:4],
        "accel": imu[:, 4:7],
        "t_vicon": vicon[:, 0],
        "vicon_positions": vicon[:, 1:4],
        "vicon_quaternions": vicon[:, 4:8],
        "keyframes": keyframes[:, 0],
    }


def plot_states(result: CalibrationResult, save_path: Optional[Path] = None) -> None:
    """Plot estimated positions, velocities and biases over time."""
    times = np.asarray(result.times)
    states = result.states
    if not states:
        logger.warning("no keyframe states to plot")
        return
    t = times - times[0]
    p = np.array([s.p for s in states])
    v = np.array([s.v for s in states])
    bg = np.array([s.bg for s in states])
    ba = np.array([s.ba for s in states])

    fig, axes = plt.subplots(2, 2, figsize=(14, 10))
    panels = [
        (axes[0, 0], p, "Position [m]"),
        (axes[0, 1], v, "Velocity [m/s]"),
        (axes[1, 0], bg, "Gyro bias [rad/s]"),
        (axes[1, 1], ba, "Accel bias [m/s²]"),
    ]
    for ax, data, label in panels:
        for i, axis in enumerate(["x", "y", "z"]):
            ax.plot(t, data[:, i], label=axis, linewidth=1.5)
        ax.set_xlabel("Time [s]")
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.3)
        ax.legend()

    plt.suptitle("Estimated IMU states at keyframes", fontsize=14)
    plt.tight_layout()
    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Saved figure: {save_path}")
    plt.close(fig)


def print_report(result: CalibrationResult) -> None:
    print("\n" + "=" * 70)
    print("Mocap-to-IMU Calibration Results")
    print("=" * 70)
    print(f"Keyframes used:       {len(result.catalog)} ({len(result.dropped)} dropped)")
    print(f"Rounds:               {len(result.rounds)}")
    for summary in result.rounds:
        print(
            f"  round {summary.round_index + 1}: {summary.iterations:3d} iterations, "
            f"error {summary.initial_error:.4e} -> {summary.final_error:.4e} ({summary.termination})"
        )
    print("-" * 70)
    print("R_BtoI:")
    for row in result.R_BtoI:
        print("  " + " ".join(f"{x:>10.6f}" for x in row))
    print(f"q_BtoI:               {np.array2string(result.q_BtoI, precision=6)}")
    print(f"p_BinI [m]:           {np.array2string(result.p_BinI, precision=6)}")
    print(f"gravity [m/s²]:       {np.array2string(result.gravity, precision=6)}")
    print(f"|gravity| [m/s²]:     {np.linalg.norm(result.gravity):.6f}")
    toff = result.time_offset
    print(f"toff vicon->imu [s]:  {toff:.6f}" if toff is not None else "toff vicon->imu [s]:  not estimated")
    print("=" * 70)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Estimate IMU ground truth and mocap-to-IMU calibration"
    )
    parser.add_argument("data", type=Path, help="Dataset directory")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config JSON (default: <data>/config.json if present)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output directory (default: <data>/output)",
    )
    parser.add_argument(
        "--max-gap",
        type=float,
        default=0.1,
        help="Largest mocap sample spacing treated as continuous tracking [s]",
    )
    parser.add_argument(
        "--log",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--plot", action="store_true", help="Save a plot of the estimated states")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log), format=LOG_FORMAT)

    config_path = args.config or args.data / "config.json"
    output_dir = args.output or args.data / "output"

    try:
        if config_path.exists():
            config = CalibrationConfig.from_json(config_path)
        else:
            logger.info("no config at %s, using defaults", config_path)
            config = CalibrationConfig()
        logger.info("configuration:\n%s", config.describe())

        data = load_dataset(args.data)
        print(f"Loaded dataset: {args.data}")
        print(f"  IMU samples:   {len(data['t_imu'])}")
        print(f"  Mocap samples: {len(data['t_vicon'])}")
        print(f"  Keyframes:     {len(data['keyframes'])}")

        propagator = ImuPropagator(data["t_imu"], data["gyro"], data["accel"], noise=config.imu_noise())
        interpolator = PoseInterpolator(
            data["t_vicon"],
            data["vicon_positions"],
            data["vicon_quaternions"],
            covariance=config.vicon_covariance(),
            max_gap=args.max_gap,
        )
        solver = ViconGraphSolver(config, propagator, interpolator, data["keyframes"])
        result = solver.build_and_solve()
    except (Vicon2GTError, OSError, ValueError) as e:
        logger.error("%s", e)
        return 1

    print_report(result)
    write_state_csv(output_dir / "states.csv", result.times, result.states)
    write_info_file(output_dir / "info.txt", result)
    print(f"Saved states: {output_dir / 'states.csv'}")
    print(f"Saved report: {output_dir / 'info.txt'}")

    if args.plot:
        plot_states(result, save_path=output_dir / "states.svg")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
