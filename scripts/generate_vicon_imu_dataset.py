"""Generate a synthetic mocap + IMU dataset for the vicon2gt command line tool.

Creates one recording of a rigid body carrying an IMU, tracked by a
motion-capture system:
    - 3D sinusoidal trajectory (position and orientation)
    - IMU measurements (gyro + specific force) with configurable noise/bias
    - Mocap body poses offset by a known extrinsic and clock offset
    - Keyframe timestamps
    - Ground truth keyframe states and calibration

Saves to: data/sim/vicon_imu_<preset>/
"""

import argparse
import json
from pathlib import Path

import numpy as np

from vicon2gt.calibration.export import write_state_csv
from vicon2gt.coords.rotations import so3_exp
from vicon2gt.sensors.types import ImuNoise
from vicon2gt.sim import generate_vicon_imu_data


# ============================================================================
# PRESET CONFIGURATIONS
# ============================================================================

PRESETS = {
    'ideal': {
        'description': 'Noiseless IMU, identity calibration, synchronized clocks',
        'noisy': False,
        'rotation_vector': [0.0, 0.0, 0.0],
        'p_BinI': [0.0, 0.0, 0.0],
        'toff': 0.0,
        'gyro_bias': [0.0, 0.0, 0.0],
        'accel_bias': [0.0, 0.0, 0.0],
    },
    'basic': {
        'description': 'Noisy IMU with biases and a rotated, offset marker body',
        'noisy': True,
        'rotation_vector': [0.1, -0.2, 0.3],
        'p_BinI': [0.05, -0.03, 0.08],
        'toff': 0.0,
        'gyro_bias': [0.002, -0.001, 0.003],
        'accel_bias': [0.05, -0.04, 0.02],
    },
    'toff': {
        'description': 'As basic, with the mocap clock 15 ms ahead of the IMU',
        'noisy': True,
        'rotation_vector': [0.1, -0.2, 0.3],
        'p_BinI': [0.05, -0.03, 0.08],
        'toff': 0.015,
        'gyro_bias': [0.002, -0.001, 0.003],
        'accel_bias': [0.05, -0.04, 0.02],
    },
}


def generate_vicon_imu_dataset(
    output_dir: str,
    preset: str = 'basic',
    duration: float = 20.0,
    imu_rate: float = 200.0,
    vicon_rate: float = 100.0,
    keyframe_rate: float = 10.0,
    seed: int = 42,
) -> None:
    """Generate and save one synthetic dataset.

    Args:
        output_dir: Output directory path.
        preset: Name of the preset in PRESETS.
        duration: Recording length (s).
        imu_rate: IMU rate (Hz).
        vicon_rate: Mocap rate (Hz).
        keyframe_rate: Keyframe rate (Hz).
        seed: Random seed.
    """
    cfg = PRESETS[preset]
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    print(f"\n{'='*70}")
    print(f"Generating mocap + IMU dataset ({preset}: {cfg['description']})")
    print(f"{'='*70}")

    R_BtoI = so3_exp(np.array(cfg['rotation_vector']))
    data = generate_vicon_imu_data(
        duration=duration,
        imu_rate=imu_rate,
        vicon_rate=vicon_rate,
        keyframe_rate=keyframe_rate,
        R_BtoI=R_BtoI,
        p_BinI=np.array(cfg['p_BinI']),
        toff=cfg['toff'],
        gyro_bias=np.array(cfg['gyro_bias']),
        accel_bias=np.array(cfg['accel_bias']),
        noise=ImuNoise() if cfg['noisy'] else None,
        seed=seed,
    )

    print(f"\n1. Writing sensor streams...")
    np.savetxt(
        output_path / "imu.csv",
        np.column_stack([data.t_imu, data.gyro, data.accel]),
        delimiter=",", header="t,wx,wy,wz,ax,ay,az", fmt="%.9f",
    )
    print(f"   Saved: imu.csv ({len(data.t_imu)} samples, {imu_rate:.0f} Hz)")
    np.savetxt(
        output_path / "vicon.csv",
        np.column_stack([data.t_vicon, data.vicon_positions, data.vicon_quaternions]),
        delimiter=",", header="t,px,py,pz,qw,qx,qy,qz", fmt="%.9f",
    )
    print(f"   Saved: vicon.csv ({len(data.t_vicon)} samples, {vicon_rate:.0f} Hz)")
    np.savetxt(
        output_path / "keyframes.csv",
        data.keyframe_times.reshape(-1, 1),
        delimiter=",", header="t", fmt="%.9f",
    )
    print(f"   Saved: keyframes.csv ({len(data.keyframe_times)} keyframes)")

    print(f"\n2. Writing ground truth...")
    write_state_csv(output_path / "groundtruth.csv", data.keyframe_times, data.true_states)
    truth = {
        'R_BtoI': data.R_BtoI.tolist(),
        'p_BinI': data.p_BinI.tolist(),
        'gravity': data.gravity.tolist(),
        'toff': data.toff,
        'gyro_bias': cfg['gyro_bias'],
        'accel_bias': cfg['accel_bias'],
    }
    with open(output_path / "truth.json", "w") as f:
        json.dump(truth, f, indent=2)
    print(f"   Saved: groundtruth.csv, truth.json")

    print(f"\n3. Saving estimator configuration...")
    config = {
        'grav_inV': [0.0, 0.0, 9.8],
        'R_BtoI': np.eye(3).reshape(-1).tolist(),
        'p_BinI': [0.0, 0.0, 0.0],
        'toff_imu_to_vicon': 0.0,
        'enforce_grav_mag': True,
        'estimate_toff_vicon_to_imu': cfg['toff'] != 0.0,
        'num_loop_relin': 2,
    }
    with open(output_path / "config.json", "w") as f:
        json.dump(config, f, indent=2)
    print(f"   Saved: config.json")

    print(f"\n{'='*70}")
    print(f"Dataset generation complete!")
    print(f"{'='*70}")
    print(f"Output directory: {output_path.absolute()}")
    print(f"\nRun the estimator with:")
    print(f"  vicon2gt {output_path} --plot")
    print(f"\n")


def main():
    parser = argparse.ArgumentParser(
        description="Generate a synthetic mocap + IMU dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Presets:\n" + "\n".join(
            f"  {name:<8} {cfg['description']}" for name, cfg in PRESETS.items()
        ),
    )
    parser.add_argument(
        '--preset',
        choices=sorted(PRESETS),
        default='basic',
        help='Dataset preset (default: basic)',
    )
    parser.add_argument(
        '--output',
        type=str,
        default=None,
        help='Output directory (default: data/sim/vicon_imu_<preset>)',
    )
    parser.add_argument('--duration', type=float, default=20.0, help='Recording length [s]')
    parser.add_argument('--imu-rate', type=float, default=200.0, help='IMU rate [Hz]')
    parser.add_argument('--vicon-rate', type=float, default=100.0, help='Mocap rate [Hz]')
    parser.add_argument('--keyframe-rate', type=float, default=10.0, help='Keyframe rate [Hz]')
    parser.add_argument('--seed', type=int, default=42, help='Random seed')
    args = parser.parse_args()

    generate_vicon_imu_dataset(
        output_dir=args.output or f"data/sim/vicon_imu_{args.preset}",
        preset=args.preset,
        duration=args.duration,
        imu_rate=args.imu_rate,
        vicon_rate=args.vicon_rate,
        keyframe_rate=args.keyframe_rate,
        seed=args.seed,
    )


if __name__ == '__main__':
    main()
