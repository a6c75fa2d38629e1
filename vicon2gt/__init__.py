"""Motion-capture to inertial ground-truth estimation.

This package jointly estimates, from a motion-capture ("Vicon") trajectory
and raw inertial measurements:
- the extrinsic calibration between the mocap body frame and the IMU,
- the gravity vector expressed in the mocap reference frame,
- optionally the time offset between the two clocks,
- the full IMU state (orientation, velocity, position, biases) at keyframes.

Sub-packages:
- coords: Rotation representations and SO(3) operations
- estimators: Unknown store, factor graph and Levenberg-Marquardt solver
- sensors: IMU preintegration and mocap pose interpolation
- calibration: Keyframes, residual models, graph assembly and the solve loop
- sim: Synthetic IMU + mocap data from analytic trajectories
"""

__version__ = "0.1.0"
