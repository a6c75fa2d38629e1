"""Residual models of the mocap-to-IMU calibration graph.

Factors connect the unknowns of the calibration problem and encode:
    - Priors: time offset stability, gravity magnitude
    - Mocap pose measurements of the body at a keyframe
    - Preintegrated IMU measurements between consecutive keyframes

Frames: I = IMU, B = mocap body, V = mocap reference. R_I / p_I come from
the keyframe NavState, R_BtoI / p_BinI are the extrinsic unknowns, g is
the gravity unknown. All orientation Jacobians are with respect to right
perturbations R ⊕ δ = R Exp(δ).

Mocap pose residual (6):
    r_θ = Log(R_measᵀ R_I R_BtoI)
    r_p = p_I + R_I p_BinI - p_meas

Preintegrated IMU residual (15), with bias corrections about the
linearization point (δbg = bg_i - bg_lin, δba = ba_i - ba_lin):
    r_R  = Log((ΔR Exp(J_Rg δbg))ᵀ R_iᵀ R_j)
    r_v  = R_iᵀ (v_j - v_i + g Δt) - (Δv + J_Vg δbg + J_Va δba)
    r_p  = R_iᵀ (p_j - p_i - v_i Δt + ½ g Δt²) - (Δp + J_Pg δbg + J_Pa δba)
    r_bg = bg_j - bg_i
    r_ba = ba_j - ba_i
"""

import logging
from typing import Optional, Tuple

import numpy as np

from vicon2gt.coords.rotations import (
    quat_to_rotation_matrix,
    right_jacobian,
    right_jacobian_inverse,
    skew,
    so3_exp,
    so3_log,
)
from vicon2gt.errors import NumericalSingularityError
from vicon2gt.estimators.factor_graph import Factor
from vicon2gt.estimators.keys import Symbol
from vicon2gt.sensors.interpolator import Interpolator
from vicon2gt.sensors.types import (
    IDX_BA,
    IDX_BG,
    IDX_P,
    IDX_THETA,
    IDX_V,
    NAV_STATE_DIM,
    NavState,
    PreintegratedDelta,
)

logger = logging.getLogger(__name__)

# Half-width of the central difference used for mocap pose rates (s)
POSE_RATE_STEP = 5e-3

# Conditioning limit above which a covariance is treated as singular
MAX_COVARIANCE_CONDITION = 1e14


def information_from_covariance(covariance: np.ndarray, what: str = "covariance") -> np.ndarray:
    """
    Invert a measurement covariance.

    Raises:
        NumericalSingularityError: If the covariance is not finite or
            not safely invertible.
    """
    covariance = np.atleast_2d(np.asarray(covariance, dtype=float))
    if covariance.shape[0] != covariance.shape[1]:
        raise NumericalSingularityError(f"{what} must be square, got shape {covariance.shape}")
    if not np.all(np.isfinite(covariance)):
        raise NumericalSingularityError(f"{what} is not finite (norm = {np.linalg.norm(covariance)})")
    if np.linalg.cond(covariance) > MAX_COVARIANCE_CONDITION:
        raise NumericalSingularityError(f"{what} is singular (cond = {np.linalg.cond(covariance):.3e})")
    try:
        information = np.linalg.inv(covariance)
    except np.linalg.LinAlgError as e:
        raise NumericalSingularityError(f"{what} is not invertible: {e}") from e
    if not np.all(np.isfinite(information)):
        raise NumericalSingularityError(f"{what} inverse is not finite")
    return 0.5 * (information + information.T)


def create_prior_factor(key: Symbol, prior: np.ndarray, sigma: float) -> Factor:
    """
    Prior on a vector-space unknown.

    Residual:
        r = x - prior

    Args:
        key: Unknown to constrain (e.g. the time offset T(0)).
        prior: Prior value.
        sigma: Standard deviation of every component.

    Returns:
        Factor instance for the prior constraint.
    """
    prior = np.atleast_1d(np.asarray(prior, dtype=float)).copy()
    n = prior.size
    information = np.eye(n) / sigma**2

    def residual_func(x_vars):
        return np.atleast_1d(x_vars[0]) - prior

    def jacobian_func(x_vars):
        return [np.eye(n)]

    return Factor([key], residual_func, jacobian_func, information, name="PriorFactor")


def create_gravity_magnitude_prior(key: Symbol, magnitude: float, sigma: float) -> Factor:
    """
    Prior keeping the gravity vector at a fixed norm.

    Residual:
        r = ‖g‖ - g₀

    Jacobian:
        ∂r/∂g = gᵀ / ‖g‖
    """
    information = np.array([[1.0 / sigma**2]])

    def residual_func(x_vars):
        return np.array([np.linalg.norm(x_vars[0]) - magnitude])

    def jacobian_func(x_vars):
        g = np.asarray(x_vars[0], dtype=float)
        norm = np.linalg.norm(g)
        if norm < 1e-12:
            return [np.zeros((1, 3))]
        return [g.reshape(1, 3) / norm]

    return Factor([key], residual_func, jacobian_func, information, name="GravityMagnitudePrior")


def vicon_pose_residual(
    state: NavState,
    q_BtoI: np.ndarray,
    p_BinI: np.ndarray,
    q_meas: np.ndarray,
    p_meas: np.ndarray,
) -> np.ndarray:
    """6-dim residual between predicted and measured body pose."""
    R_I = state.R
    R_BtoI = quat_to_rotation_matrix(q_BtoI)
    R_meas = quat_to_rotation_matrix(q_meas)
    r = np.zeros(6)
    r[0:3] = so3_log(R_meas.T @ R_I @ R_BtoI)
    r[3:6] = state.p + R_I @ p_BinI - p_meas
    return r


def vicon_pose_jacobians(
    state: NavState,
    q_BtoI: np.ndarray,
    p_BinI: np.ndarray,
    q_meas: np.ndarray,
    p_meas: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Residual and Jacobians of the mocap pose residual.

    Returns:
        Tuple (r, J_state (6x15), J_R_BtoI (6x3), J_p_BinI (6x3)).
    """
    R_I = state.R
    R_BtoI = quat_to_rotation_matrix(q_BtoI)
    r = vicon_pose_residual(state, q_BtoI, p_BinI, q_meas, p_meas)
    Jr_inv = right_jacobian_inverse(r[0:3])

    J_state = np.zeros((6, NAV_STATE_DIM))
    J_state[0:3, IDX_THETA] = Jr_inv @ R_BtoI.T
    J_state[3:6, IDX_THETA] = -R_I @ skew(p_BinI)
    J_state[3:6, IDX_P] = np.eye(3)

    J_rot = np.zeros((6, 3))
    J_rot[0:3] = Jr_inv

    J_trans = np.zeros((6, 3))
    J_trans[3:6] = R_I
    return r, J_state, J_rot, J_trans


def create_vicon_pose_factor(
    state_key: Symbol,
    rot_key: Symbol,
    trans_key: Symbol,
    covariance: np.ndarray,
    q_meas: np.ndarray,
    p_meas: np.ndarray,
) -> Factor:
    """
    Mocap pose measurement at a keyframe with a fixed, known time offset.

    Args:
        state_key: Keyframe NavState X(i).
        rot_key: Extrinsic rotation C(0), stored as quaternion R_BtoI.
        trans_key: Extrinsic translation C(1), p_BinI.
        covariance: 6x6 sample covariance [rotation, position].
        q_meas: Measured body orientation (body -> V).
        p_meas: Measured body position in V.

    Raises:
        NumericalSingularityError: If the covariance cannot be inverted.
    """
    information = information_from_covariance(covariance, "mocap pose covariance")
    q_meas = np.asarray(q_meas, dtype=float).copy()
    p_meas = np.asarray(p_meas, dtype=float).copy()

    def residual_func(x_vars):
        state, q_BtoI, p_BinI = x_vars
        return vicon_pose_residual(state, q_BtoI, p_BinI, q_meas, p_meas)

    def jacobian_func(x_vars):
        state, q_BtoI, p_BinI = x_vars
        _, J_state, J_rot, J_trans = vicon_pose_jacobians(state, q_BtoI, p_BinI, q_meas, p_meas)
        return [J_state, J_rot, J_trans]

    return Factor(
        [state_key, rot_key, trans_key],
        residual_func,
        jacobian_func,
        information,
        name="ViconPoseFactor",
    )


def pose_rate(
    interpolator: Interpolator, t: float, h: float = POSE_RATE_STEP
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Local angular rate (body frame) and linear velocity of the mocap pose.

    Central difference over [t - h, t + h], falling back to a one-sided
    difference at the edges of the recording.

    Returns:
        Tuple (omega, velocity), or None without support around t.
    """
    q_minus, p_minus, _, ok_minus = interpolator.get_pose(t - h)
    q_plus, p_plus, _, ok_plus = interpolator.get_pose(t + h)
    span = 2.0 * h
    if not ok_minus or not ok_plus:
        q_mid, p_mid, _, ok_mid = interpolator.get_pose(t)
        if not ok_mid or not (ok_minus or ok_plus):
            return None
        if ok_plus:
            q_minus, p_minus = q_mid, p_mid
        else:
            q_plus, p_plus = q_mid, p_mid
        span = h
    R_minus = quat_to_rotation_matrix(q_minus)
    R_plus = quat_to_rotation_matrix(q_plus)
    omega = so3_log(R_minus.T @ R_plus) / span
    velocity = (p_plus - p_minus) / span
    return omega, velocity


def create_vicon_pose_timeoffset_factor(
    state_key: Symbol,
    rot_key: Symbol,
    trans_key: Symbol,
    toff_key: Symbol,
    timestamp: float,
    interpolator: Interpolator,
    covariance: np.ndarray,
) -> Factor:
    """
    Mocap pose measurement whose query time depends on the time offset.

    The measured pose is looked up at timestamp + toff on every evaluation.
    The pose residual is shared with the fixed-offset factor; the extra
    Jacobian column follows the local rate of the mocap pose:
        ∂r_θ/∂toff = -Jr⁻¹(r_θ) Exp(r_θ)ᵀ ω
        ∂r_p/∂toff = -v

    Args:
        state_key: Keyframe NavState X(i).
        rot_key: Extrinsic rotation C(0).
        trans_key: Extrinsic translation C(1).
        toff_key: Time offset T(0).
        timestamp: Keyframe time in the IMU clock (s).
        interpolator: Mocap pose source.
        covariance: 6x6 covariance of the sample at construction time.

    Raises:
        NumericalSingularityError: If the covariance cannot be inverted.
    """
    information = information_from_covariance(covariance, "mocap pose covariance")

    def lookup(toff):
        query = timestamp + float(np.atleast_1d(toff)[0])
        q_meas, p_meas, _, ok = interpolator.get_pose(query)
        if not ok:
            logger.warning("no mocap pose at %.9f during evaluation; factor inactive", query)
            return None
        return query, q_meas, p_meas

    def residual_func(x_vars):
        state, q_BtoI, p_BinI, toff = x_vars
        sample = lookup(toff)
        if sample is None:
            return np.zeros(6)
        _, q_meas, p_meas = sample
        return vicon_pose_residual(state, q_BtoI, p_BinI, q_meas, p_meas)

    def jacobian_func(x_vars):
        state, q_BtoI, p_BinI, toff = x_vars
        sample = lookup(toff)
        rates = pose_rate(interpolator, sample[0]) if sample is not None else None
        if sample is None or rates is None:
            return [np.zeros((6, NAV_STATE_DIM)), np.zeros((6, 3)), np.zeros((6, 3)), np.zeros((6, 1))]
        _, q_meas, p_meas = sample
        r, J_state, J_rot, J_trans = vicon_pose_jacobians(state, q_BtoI, p_BinI, q_meas, p_meas)
        omega, velocity = rates

        J_toff = np.zeros((6, 1))
        J_toff[0:3, 0] = -right_jacobian_inverse(r[0:3]) @ so3_exp(r[0:3]).T @ omega
        J_toff[3:6, 0] = -velocity
        return [J_state, J_rot, J_trans, J_toff]

    return Factor(
        [state_key, rot_key, trans_key, toff_key],
        residual_func,
        jacobian_func,
        information,
        name="ViconPoseTimeoffsetFactor",
    )


def _imu_terms(si: NavState, sj: NavState, g: np.ndarray, delta: PreintegratedDelta, dR_meas: np.ndarray):
    dbg = si.bg - delta.bias_gyro_lin
    dba = si.ba - delta.bias_accel_lin
    dt = delta.dt
    Ri = si.R
    dR_corr = dR_meas @ so3_exp(delta.d_rot_d_bg @ dbg)
    dv_corr = delta.v + delta.d_vel_d_bg @ dbg + delta.d_vel_d_ba @ dba
    dp_corr = delta.p + delta.d_pos_d_bg @ dbg + delta.d_pos_d_ba @ dba

    u_v = Ri.T @ (sj.v - si.v + g * dt)
    u_p = Ri.T @ (sj.p - si.p - si.v * dt + 0.5 * g * dt**2)

    r = np.zeros(NAV_STATE_DIM)
    r[0:3] = so3_log(dR_corr.T @ Ri.T @ sj.R)
    r[3:6] = u_v - dv_corr
    r[6:9] = u_p - dp_corr
    r[9:12] = sj.bg - si.bg
    r[12:15] = sj.ba - si.ba
    return r, u_v, u_p, dbg


def create_preintegrated_imu_factor(
    key_i: Symbol,
    key_j: Symbol,
    gravity_key: Symbol,
    delta: PreintegratedDelta,
) -> Factor:
    """
    Preintegrated IMU measurement between consecutive keyframes.

    Args:
        key_i: NavState of the earlier keyframe.
        key_j: NavState of the later keyframe.
        gravity_key: Gravity vector G(0).
        delta: Preintegrated measurement, linearized about the bias of
            keyframe i at graph construction.

    Raises:
        NumericalSingularityError: If the preintegration covariance is
            not invertible.
    """
    information = information_from_covariance(delta.covariance, "preintegration covariance")
    dR_meas = quat_to_rotation_matrix(delta.q)
    dt = delta.dt
    I3 = np.eye(3)

    def residual_func(x_vars):
        si, sj, g = x_vars
        r, _, _, _ = _imu_terms(si, sj, np.asarray(g, dtype=float), delta, dR_meas)
        return r

    def jacobian_func(x_vars):
        si, sj, g = x_vars
        r, u_v, u_p, dbg = _imu_terms(si, sj, np.asarray(g, dtype=float), delta, dR_meas)
        Ri_T = si.R.T
        Jr_inv = right_jacobian_inverse(r[0:3])

        J_i = np.zeros((NAV_STATE_DIM, NAV_STATE_DIM))
        J_i[0:3, IDX_THETA] = -Jr_inv @ sj.R.T @ si.R
        J_i[0:3, IDX_BG] = (
            -Jr_inv @ so3_exp(r[0:3]).T
            @ right_jacobian(delta.d_rot_d_bg @ dbg) @ delta.d_rot_d_bg
        )
        J_i[3:6, IDX_THETA] = skew(u_v)
        J_i[3:6, IDX_BG] = -delta.d_vel_d_bg
        J_i[3:6, IDX_V] = -Ri_T
        J_i[3:6, IDX_BA] = -delta.d_vel_d_ba
        J_i[6:9, IDX_THETA] = skew(u_p)
        J_i[6:9, IDX_BG] = -delta.d_pos_d_bg
        J_i[6:9, IDX_V] = -Ri_T * dt
        J_i[6:9, IDX_BA] = -delta.d_pos_d_ba
        J_i[6:9, IDX_P] = -Ri_T
        J_i[9:12, IDX_BG] = -I3
        J_i[12:15, IDX_BA] = -I3

        J_j = np.zeros((NAV_STATE_DIM, NAV_STATE_DIM))
        J_j[0:3, IDX_THETA] = Jr_inv
        J_j[3:6, IDX_V] = Ri_T
        J_j[6:9, IDX_P] = Ri_T
        J_j[9:12, IDX_BG] = I3
        J_j[12:15, IDX_BA] = I3

        J_g = np.zeros((NAV_STATE_DIM, 3))
        J_g[3:6] = Ri_T * dt
        J_g[6:9] = 0.5 * Ri_T * dt**2
        return [J_i, J_j, J_g]

    return Factor(
        [key_i, key_j, gravity_key],
        residual_func,
        jacobian_func,
        information,
        name="PreintegratedImuFactor",
    )
