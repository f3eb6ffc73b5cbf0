"""Recursive kinematics and dynamics over a body tree.

All spatial quantities are expressed in Ground. Body velocities and
accelerations are taken at the body origin; accelerations are classical
time derivatives:

    V_B = S(r_PB) V_P + H_B u_B
    A_B = S(r_PB) A_P + H_B udot_B + κ_B

where S(r) shifts a spatial velocity by r (see `multibody.spatial`) and κ_B
collects the velocity-dependent terms. With F_B the spatial force that the
parent exerts on B through the mobilizer (moment about the origin of B),
the Newton-Euler equations of each body read

    F_B = I_B A_B + b_B - F_app_B + Σ_children S(r_BC)^T F_C
    H_B^T F_B = τ_B

Forward iterations compute kinematics from the root to the leaves; backward
iterations accumulate forces or inertias from the leaves to the root.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from multibody.spatial import rotate_spatial, rotate_spatial_matrix, shift_force, shift_matrix
from multibody.spatial_inertia import gyroscopic_force
from multibody.tree import BodyTree


@dataclass
class PositionKinematics:
    """Position-stage results of the forward iterations.

    Attributes:
        X_FM: Mobilizer transforms per body (4, 4).
        X_GB: Body transforms in Ground per body (4, 4).
        H_FM: Mobility matrices in F at the M origin (6, nu_B).
        H: Mobility matrices in Ground at the body origin (6, nu_B).
        S: Shift matrices S(r_PB) from the parent origin to the body origin (6, 6).
        r_MB: Vectors from the M origin to the body origin, in Ground (3,).
        R_GF: Orientation of each mobilizer's F frame in Ground (3, 3).
        inertias: Spatial inertias about the body origin in Ground (6, 6).
        jacobians: Body Jacobians V_B = J_B u (6, nu).
    """

    X_FM: List[np.ndarray] = field(default_factory=list)
    X_GB: List[np.ndarray] = field(default_factory=list)
    H_FM: List[np.ndarray] = field(default_factory=list)
    H: List[np.ndarray] = field(default_factory=list)
    S: List[np.ndarray] = field(default_factory=list)
    r_MB: List[np.ndarray] = field(default_factory=list)
    R_GF: List[np.ndarray] = field(default_factory=list)
    inertias: List[np.ndarray] = field(default_factory=list)
    jacobians: List[np.ndarray] = field(default_factory=list)


@dataclass
class VelocityKinematics:
    """Velocity-stage results of the forward iterations.

    Attributes:
        V_FM: Mobilizer velocities in F at the M origin (6,).
        V_GB: Body velocities in Ground at the body origin (6,).
        bias: Acceleration bias κ_B per body (6,).
        qdot: Generalized coordinate derivatives (nq,).
    """

    V_FM: List[np.ndarray] = field(default_factory=list)
    V_GB: List[np.ndarray] = field(default_factory=list)
    bias: List[np.ndarray] = field(default_factory=list)
    qdot: Optional[np.ndarray] = None


def _check_length(arr: np.ndarray, n: int) -> np.ndarray:
    arr = np.asarray(arr, dtype=np.float64).flatten()
    if arr.shape[0] != n:
        raise ValueError(f"Expected arrays of length {n}, got {arr.shape[0]}")
    return arr


def calc_position_kinematics(tree: BodyTree, q: np.ndarray) -> PositionKinematics:
    """Forward iterations at the position level.

    X_GB = X_GP @ X_PF @ X_FM(q) @ X_MB
    H_B = S(r_MB) @ diag(R_GF, R_GF) @ H_FM(q)

    Args:
        tree: Finalized body tree.
        q: Generalized coordinates (nq,).

    Returns:
        PositionKinematics for every body.
    """
    q = _check_length(q, tree.nq)
    n = tree.num_bodies
    pk = PositionKinematics(
        X_FM=[np.eye(4)] * n,
        X_GB=[np.eye(4)] * n,
        H_FM=[np.zeros((6, 0))] * n,
        H=[np.zeros((6, 0))] * n,
        S=[np.eye(6)] * n,
        r_MB=[np.zeros(3)] * n,
        R_GF=[np.eye(3)] * n,
        inertias=[np.zeros((6, 6))] * n,
        jacobians=[np.zeros((6, tree.nu))] * n,
    )

    for index in tree.order[1:]:
        node = tree.bodies[index]
        parent = node.parent
        mobilizer = node.mobilizer
        q_b = q[tree.q_slice(index)]

        X_FM = mobilizer.calc_transform(q_b)
        X_GF = pk.X_GB[parent] @ node.X_PF
        X_GM = X_GF @ X_FM
        X_GB = X_GM @ node.X_MB
        R_GF = X_GF[:3, :3]

        r_MB = X_GB[:3, 3] - X_GM[:3, 3]
        r_PB = X_GB[:3, 3] - pk.X_GB[parent][:3, 3]
        H_FM = mobilizer.calc_h_matrix(q_b)
        H = shift_matrix(r_MB) @ rotate_spatial_matrix(R_GF) @ H_FM
        S = shift_matrix(r_PB)

        J = S @ pk.jacobians[parent]
        J[:, tree.u_slice(index)] += H

        pk.X_FM[index] = X_FM
        pk.X_GB[index] = X_GB
        pk.H_FM[index] = H_FM
        pk.H[index] = H
        pk.S[index] = S
        pk.r_MB[index] = r_MB
        pk.R_GF[index] = R_GF
        pk.inertias[index] = node.mass_properties.spatial_inertia_in_frame(X_GB[:3, :3])
        pk.jacobians[index] = J

    return pk


def calc_velocity_kinematics(tree: BodyTree, pk: PositionKinematics, q: np.ndarray,
                             u: np.ndarray) -> VelocityKinematics:
    """Forward iterations at the velocity level.

    With V_rel = H_B u_B = [w_rel, v_rel] and (w_P, v_P) the parent velocity:

        κ_B = [w_P × w_rel,
               w_P × (v_B - v_P) + w_P × v_rel + w_rel × (w_rel × r_MB)]
              + S(r_MB) diag(R_GF, R_GF) Hdot_FM u_B

    Args:
        tree: Finalized body tree.
        pk: Position kinematics for the same q.
        q: Generalized coordinates (nq,).
        u: Generalized speeds (nu,).

    Returns:
        VelocityKinematics for every body.
    """
    q = _check_length(q, tree.nq)
    u = _check_length(u, tree.nu)
    n = tree.num_bodies
    vk = VelocityKinematics(
        V_FM=[np.zeros(6)] * n,
        V_GB=[np.zeros(6)] * n,
        bias=[np.zeros(6)] * n,
        qdot=np.zeros(tree.nq),
    )

    for index in tree.order[1:]:
        node = tree.bodies[index]
        parent = node.parent
        mobilizer = node.mobilizer
        q_b = q[tree.q_slice(index)]
        u_b = u[tree.u_slice(index)]

        V_P = vk.V_GB[parent]
        V_rel = pk.H[index] @ u_b
        V_B = pk.S[index] @ V_P + V_rel

        w_P = V_P[:3]
        w_rel = V_rel[:3]
        r_MB = pk.r_MB[index]
        kappa = np.concatenate([
            np.cross(w_P, w_rel),
            np.cross(w_P, V_B[3:] - V_P[3:]) + np.cross(w_P, V_rel[3:])
            + np.cross(w_rel, np.cross(w_rel, r_MB)),
        ])
        hdot_u = mobilizer.calc_hdot_u(q_b, u_b)
        if np.any(hdot_u):
            kappa += shift_matrix(r_MB) @ rotate_spatial_matrix(pk.R_GF[index]) @ hdot_u

        vk.V_FM[index] = mobilizer.calc_velocity(q_b, u_b)
        vk.V_GB[index] = V_B
        vk.bias[index] = kappa
        vk.qdot[tree.q_slice(index)] = mobilizer.calc_qdot(q_b, u_b)

    return vk


def calc_gyroscopic_forces(tree: BodyTree, pk: PositionKinematics,
                           vk: VelocityKinematics) -> List[np.ndarray]:
    """Velocity-dependent inertial forces b_B about each body origin, in Ground."""
    forces = [np.zeros(6) for _ in range(tree.num_bodies)]
    for index in tree.order[1:]:
        forces[index] = gyroscopic_force(pk.inertias[index], vk.V_GB[index][:3])
    return forces


def calc_body_accelerations(tree: BodyTree, pk: PositionKinematics, udot: np.ndarray,
                            bias: Optional[List[np.ndarray]] = None) -> List[np.ndarray]:
    """Body accelerations from generalized accelerations.

    Args:
        tree: Finalized body tree.
        pk: Position kinematics.
        udot: Generalized accelerations (nu,).
        bias: Acceleration bias κ per body; zero if None.

    Returns:
        Spatial acceleration of every body origin in Ground (6,).
    """
    udot = _check_length(udot, tree.nu)
    A = [np.zeros(6) for _ in range(tree.num_bodies)]
    for index in tree.order[1:]:
        parent = tree.bodies[index].parent
        A_B = pk.S[index] @ A[parent] + pk.H[index] @ udot[tree.u_slice(index)]
        if bias is not None:
            A_B = A_B + bias[index]
        A[index] = A_B
    return A


def calc_transmitted_forces(tree: BodyTree, pk: PositionKinematics,
                            A: List[np.ndarray],
                            gyroscopic: Optional[List[np.ndarray]] = None,
                            applied: Optional[List[np.ndarray]] = None) -> List[np.ndarray]:
    """Backward iterations of Newton-Euler: force from each parent on its child.

    F_B = I_B A_B + b_B - F_app_B + Σ_children S(r_BC)^T F_C

    Args:
        tree: Finalized body tree.
        pk: Position kinematics.
        A: Body accelerations (6,) per body.
        gyroscopic: Gyroscopic forces b_B per body; zero if None.
        applied: Applied spatial forces per body (moment about the body
            origin, in Ground); zero if None.

    Returns:
        Transmitted spatial force per body (6,); Ground's entry is the total
        force Ground exerts on its children, shifted to the Ground origin.
    """
    n = tree.num_bodies
    F = [np.zeros(6) for _ in range(n)]
    for index in reversed(tree.order[1:]):
        F_B = pk.inertias[index] @ A[index] + F[index]
        if gyroscopic is not None:
            F_B = F_B + gyroscopic[index]
        if applied is not None:
            F_B = F_B - applied[index]
        F[index] = F_B
        parent = tree.bodies[index].parent
        F[parent] = F[parent] + pk.S[index].T @ F_B
    return F


def inverse_dynamics(tree: BodyTree, pk: PositionKinematics, vk: VelocityKinematics,
                     udot: np.ndarray,
                     applied_body_forces: Optional[List[np.ndarray]] = None,
                     applied_mobility_forces: Optional[np.ndarray] = None,
                     ) -> Tuple[np.ndarray, List[np.ndarray]]:
    """Recursive Newton-Euler inverse dynamics.

    Computes the generalized force residual

        τ_res = M(q) udot + c(q, u) - τ_app - J^T F_app

    i.e. the additional mobility forces needed to produce udot.

    Args:
        tree: Finalized body tree.
        pk: Position kinematics.
        vk: Velocity kinematics.
        udot: Generalized accelerations (nu,).
        applied_body_forces: Applied spatial forces per body in Ground.
        applied_mobility_forces: Applied generalized forces (nu,).

    Returns:
        Tuple of:
            - residual: Generalized force residual (nu,).
            - forces: Transmitted spatial force per body.
    """
    A = calc_body_accelerations(tree, pk, udot, vk.bias)
    gyroscopic = calc_gyroscopic_forces(tree, pk, vk)
    F = calc_transmitted_forces(tree, pk, A, gyroscopic, applied_body_forces)

    residual = np.zeros(tree.nu)
    for index in tree.order[1:]:
        residual[tree.u_slice(index)] = pk.H[index].T @ F[index]
    if applied_mobility_forces is not None:
        residual -= _check_length(applied_mobility_forces, tree.nu)
    return residual, F


def composite_body_mass_matrix(tree: BodyTree, pk: PositionKinematics) -> np.ndarray:
    """Mass matrix M(q) from composite-body inertias.

    Ic_B = I_B + Σ_children S(r_BC)^T Ic_C S(r_BC); each block M[A, B] is
    obtained by shifting Ic_B H_B up the ancestor path of B.

    Args:
        tree: Finalized body tree.
        pk: Position kinematics.

    Returns:
        (nu, nu) symmetric mass matrix.
    """
    n = tree.num_bodies
    composite = [pk.inertias[i].copy() for i in range(n)]
    for index in reversed(tree.order[1:]):
        parent = tree.bodies[index].parent
        if parent != 0:
            S = pk.S[index]
            composite[parent] = composite[parent] + S.T @ composite[index] @ S

    M = np.zeros((tree.nu, tree.nu))
    for index in tree.order[1:]:
        u_b = tree.u_slice(index)
        if u_b.stop == u_b.start:
            continue
        F = composite[index] @ pk.H[index]
        M[u_b, u_b] = pk.H[index].T @ F
        child = index
        ancestor = tree.bodies[index].parent
        while ancestor != 0:
            F = pk.S[child].T @ F
            u_a = tree.u_slice(ancestor)
            block = pk.H[ancestor].T @ F
            M[u_a, u_b] = block
            M[u_b, u_a] = block.T
            child = ancestor
            ancestor = tree.bodies[ancestor].parent
    return M


def articulated_body_accelerations(tree: BodyTree, pk: PositionKinematics,
                                   mobility_forces: np.ndarray,
                                   body_bias_forces: Optional[List[np.ndarray]] = None,
                                   accel_bias: Optional[List[np.ndarray]] = None,
                                   ) -> Tuple[np.ndarray, List[np.ndarray]]:
    """Articulated-body forward dynamics.

    Solves M udot = τ - c for udot in O(n). Backward iterations build the
    articulated inertias IA and bias forces pA with F_B = IA_B A_B + pA_B:

        U = IA H,  D = H^T U,  τ' = τ - H^T pA
        Ia = IA - U D⁻¹ U^T,  pa = pA + Ia κ + U D⁻¹ τ'

    and forward iterations recover

        A' = S A_P + κ,  udot = D⁻¹ (τ' - U^T A'),  A = A' + H udot.

    Args:
        tree: Finalized body tree.
        pk: Position kinematics.
        mobility_forces: Net applied generalized forces τ (nu,).
        body_bias_forces: Per-body b_B - F_app_B (gyroscopic minus applied);
            zero if None.
        accel_bias: Acceleration bias κ per body; zero if None.

    Returns:
        Tuple of:
            - udot: Generalized accelerations (nu,).
            - A: Body accelerations (6,) per body.
    """
    tau = _check_length(mobility_forces, tree.nu)
    n = tree.num_bodies
    IA = [pk.inertias[i].copy() for i in range(n)]
    pA = [np.zeros(6) if body_bias_forces is None else np.array(body_bias_forces[i], dtype=np.float64)
          for i in range(n)]
    kappa = [np.zeros(6) if accel_bias is None else accel_bias[i] for i in range(n)]

    U = [None] * n
    D_inv = [None] * n
    tau_prime = [None] * n

    for index in reversed(tree.order[1:]):
        H = pk.H[index]
        parent = tree.bodies[index].parent
        if H.shape[1] > 0:
            U_b = IA[index] @ H
            D_inv_b = np.linalg.inv(H.T @ U_b)
            tau_b = tau[tree.u_slice(index)] - H.T @ pA[index]
            Ia = IA[index] - U_b @ D_inv_b @ U_b.T
            pa = pA[index] + Ia @ kappa[index] + U_b @ (D_inv_b @ tau_b)
            U[index] = U_b
            D_inv[index] = D_inv_b
            tau_prime[index] = tau_b
        else:
            Ia = IA[index]
            pa = pA[index] + Ia @ kappa[index]
        if parent != 0:
            S = pk.S[index]
            IA[parent] = IA[parent] + S.T @ Ia @ S
            pA[parent] = pA[parent] + S.T @ pa

    udot = np.zeros(tree.nu)
    A = [np.zeros(6) for _ in range(n)]
    for index in tree.order[1:]:
        parent = tree.bodies[index].parent
        A_prime = pk.S[index] @ A[parent] + kappa[index]
        if U[index] is not None:
            udot_b = D_inv[index] @ (tau_prime[index] - U[index].T @ A_prime)
            udot[tree.u_slice(index)] = udot_b
            A[index] = A_prime + pk.H[index] @ udot_b
        else:
            A[index] = A_prime
    return udot, A


def multiply_by_m_inverse(tree: BodyTree, pk: PositionKinematics, f: np.ndarray) -> np.ndarray:
    """M⁻¹ f via the articulated-body recursion without velocity terms."""
    udot, _ = articulated_body_accelerations(tree, pk, f)
    return udot


def calc_mobility_force_wrench(tree: BodyTree, pk: PositionKinematics, index: int,
                               tau_b: np.ndarray) -> np.ndarray:
    """Spatial force that mobility forces τ_B exert through the mobilizer.

    In F at the M origin the wrench is the smallest W_FM with H_FM^T W_FM = τ_B:
    a moment about each rotational axis and a force along each sliding one.
    It is returned about the body origin, in Ground.
    """
    H_FM = pk.H_FM[index]
    if H_FM.shape[1] == 0:
        return np.zeros(6)
    W_FM = np.linalg.pinv(H_FM.T) @ np.asarray(tau_b, dtype=np.float64)
    return shift_force(rotate_spatial(pk.R_GF[index], W_FM), pk.r_MB[index])


def calc_mobilizer_reaction_forces(tree: BodyTree, pk: PositionKinematics,
                                   transmitted: List[np.ndarray],
                                   mobility_forces: Optional[np.ndarray] = None) -> List[np.ndarray]:
    """Split off the part of each transmitted force the mobilizer itself drives.

    F_react = F_PB - W(τ_B), with W(τ_B) from `calc_mobility_force_wrench`,
    so that H^T F_react = H^T F_PB - τ_B = 0. Joints with six mobilities
    report zero; Ground reports zero.

    Args:
        tree: Finalized body tree.
        pk: Position kinematics.
        transmitted: Force from each parent on its child (from
            `calc_transmitted_forces`).
        mobility_forces: Generalized forces acting on the mobilities,
            applied and constraint (nu,); zero if None.

    Returns:
        Reaction spatial force per body, moment about the body origin, in Ground.
    """
    tau = np.zeros(tree.nu) if mobility_forces is None else np.asarray(mobility_forces, dtype=np.float64)
    reactions = [np.zeros(6) for _ in range(tree.num_bodies)]
    for index in tree.order[1:]:
        if pk.H[index].shape[1] == 6:
            continue
        reactions[index] = transmitted[index] - calc_mobility_force_wrench(
            tree, pk, index, tau[tree.u_slice(index)])
    return reactions
