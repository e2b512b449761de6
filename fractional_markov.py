# -*- coding: utf-8 -*-
from __future__ import annotations

import argparse
import cmath
import math
import numbers
import sys
import time
import traceback
import unittest
import unittest.mock
import uuid
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import (
    Any,
    Callable,
    ClassVar,
    Final,
    NamedTuple,
    Sequence,
    TypeAlias,
    Tuple,
)

try:
    from PIL import Image
    import numpy as np
    import numpy.typing as npt
    import matplotlib.figure
    import matplotlib.pyplot as plt
    from mpl_toolkits.mplot3d import Axes3D
    import scipy.linalg
except ImportError as import_error:
    print(
        f"Error: Missing dependencies -> {import_error}. "
        "Please run: pip install Pillow numpy matplotlib scipy"
    )
    sys.exit(1)


NDArrayF64: TypeAlias = npt.NDArray[np.float64]
NDArrayC128: TypeAlias = npt.NDArray[np.complex128]
Exponent: TypeAlias = Fraction | float | int

EIGEN_TOLERANCE: Final[float] = 1e-14
PRECISION_TOLERANCE: Final[float] = 1e-9
RESIDUAL_TOLERANCE: Final[float] = 1e-10
MAX_REFERENCE_CONDITION: Final[float] = 1.0 / math.sqrt(
    float(np.finfo(np.float64).eps)
)
NUM_STATES: Final[int] = 2
DEFAULT_OUTPUT_DIR: Final[Path] = Path("./simulation_outputs").resolve()


class SimulationError(Exception):
    pass


class EigenDecompositionError(SimulationError):
    pass


class SingularBasisError(SimulationError):
    pass


class VisualizationError(Exception):
    pass


class ConfigError(ValueError):
    pass


def _create_unique_filename(prefix: str, suffix: str) -> str:
    timestamp = time.strftime("%Y%m%d_%H%M%S")
    unique_id = uuid.uuid4().hex[:6]
    return f"{prefix}_{timestamp}_{unique_id}.{suffix}"


def _ensure_output_dir(file_path: Path) -> Path:
    resolved_path = file_path.resolve()
    output_dir = resolved_path.parent
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise VisualizationError(
            f"Directory access error for {output_dir}: {e}"
        ) from e
    return resolved_path


def _is_real_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _validate_positive_ints(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if not _is_integer(value) or value <= 0:
            raise ConfigError(
                f"Configuration error: '{name}' must be a positive integer, got {value}."
            )


def _validate_non_negative_ints(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if not _is_integer(value) or value < 0:
            raise ConfigError(
                f"Configuration error: '{name}' must be a non-negative integer, got {value}."
            )


def _validate_floats_0_1(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if not _is_real_number(value) or not (0.0 <= value <= 1.0):
            raise ConfigError(
                f"Configuration error: '{name}' must be a float between 0.0 and 1.0 (inclusive), got {value}."
            )


def _validate_floats_exclusive_0_1(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if not _is_real_number(value) or not (0.0 < value <= 1.0):
            raise ConfigError(
                f"Configuration error: '{name}' must be a float between 0.0 (exclusive) and 1.0 (inclusive), got {value}."
            )


def _validate_ordered_pair(name: str, pair: tuple[float, float]) -> None:
    if len(pair) != 2 or not all(_is_real_number(v) for v in pair):
        raise ConfigError(
            f"Configuration error: '{name}' must be a pair of numbers, got {pair}."
        )
    if pair[0] >= pair[1]:
        raise ConfigError(
            f"Configuration error: '{name}' lower bound must be less than upper bound, got {pair}."
        )


@dataclass(frozen=True)
class ChainConfig:
    A_SELF_TRANSITION: float = 0.5
    B_SELF_TRANSITION: float = 0.1
    INITIAL_STATE: float = 0.1
    NTH_ROOT: int = 32
    CYCLES: int = 5

    def __post_init__(self) -> None:
        _validate_floats_0_1(
            ("A_SELF_TRANSITION", self.A_SELF_TRANSITION),
            ("B_SELF_TRANSITION", self.B_SELF_TRANSITION),
            ("INITIAL_STATE", self.INITIAL_STATE),
        )
        _validate_positive_ints(("NTH_ROOT", self.NTH_ROOT))
        _validate_non_negative_ints(("CYCLES", self.CYCLES))


@dataclass(frozen=True)
class VisConfig:
    FIGSIZE: tuple[int, int] = (10, 8)
    DPI: int = 150
    TITLE: str = "Complex Probabilities"
    RESIDUAL_LIMITS: tuple[float, float] = (0.0, 0.2)
    TRAJECTORY_ALPHA: float = 0.9
    TRAJECTORY_LINEWIDTH: float = 1.0
    POINT_SIZE: float = 6.0
    LABEL_POINTS: bool = True
    LABEL_FONTSIZE: int = 6
    LABEL_OFFSET: float = 0.01
    DEFAULT_PLOT_FILENAME: Final[str] = field(
        default_factory=lambda: _create_unique_filename(
            "complex_probabilities", "svg"
        )
    )

    def __post_init__(self) -> None:
        _validate_positive_ints(
            ("FIGSIZE width", self.FIGSIZE[0]),
            ("FIGSIZE height", self.FIGSIZE[1]),
            ("DPI", self.DPI),
            ("LABEL_FONTSIZE", self.LABEL_FONTSIZE),
        )
        _validate_floats_exclusive_0_1(
            ("TRAJECTORY_ALPHA", self.TRAJECTORY_ALPHA)
        )
        _validate_ordered_pair("RESIDUAL_LIMITS", self.RESIDUAL_LIMITS)
        if not _is_real_number(self.POINT_SIZE) or self.POINT_SIZE <= 0:
            raise ConfigError(
                f"Configuration error: 'POINT_SIZE' must be a positive number, got {self.POINT_SIZE}."
            )
        if Path(self.DEFAULT_PLOT_FILENAME).suffix.lower() not in {
            ".svg",
            ".png",
            ".pdf",
        }:
            raise ConfigError(
                f"DEFAULT_PLOT_FILENAME must end in .svg, .png or .pdf, got '{self.DEFAULT_PLOT_FILENAME}'."
            )


def _validate_state_vector(state: Any) -> NDArrayF64:
    try:
        vector = np.asarray(state, dtype=np.float64)
    except (ValueError, TypeError) as e:
        raise SimulationError(
            f"Invalid data type for probability state: {e}"
        ) from e
    if vector.shape != (NUM_STATES,):
        raise SimulationError(
            f"Probability state shape {vector.shape} is incompatible with a {NUM_STATES}-state chain."
        )
    return vector


def initial_distribution(initial_state: float) -> NDArrayF64:
    return np.array([initial_state, 1.0 - initial_state], dtype=np.float64)


class StochasticMatrix:
    """Two-state transition matrix ``[[a, 1 - b], [1 - a, b]]``.

    Each column sums to one and states are column vectors, so one chain step
    is ``M @ p``. Parameters are taken as given: keeping ``a`` and ``b`` in
    [0, 1] is the caller's job (see ``ChainConfig``).
    """

    def __init__(self, a: float, b: float) -> None:
        self._a: Final = float(a)
        self._b: Final = float(b)
        matrix = np.array(
            [[self._a, 1.0 - self._b], [1.0 - self._a, self._b]],
            dtype=np.float64,
        )
        matrix.setflags(write=False)
        self._matrix: Final[NDArrayF64] = matrix

    @classmethod
    def from_config(cls, config: ChainConfig) -> StochasticMatrix:
        return cls(config.A_SELF_TRANSITION, config.B_SELF_TRANSITION)

    @property
    def a(self) -> float:
        return self._a

    @property
    def b(self) -> float:
        return self._b

    @property
    def matrix(self) -> NDArrayF64:
        return self._matrix

    def step(self, state: Any) -> NDArrayF64:
        return self._matrix @ _validate_state_vector(state)

    def power(self, state: Any, steps: int) -> NDArrayF64:
        _validate_non_negative_ints(("steps", steps))
        return np.linalg.matrix_power(self._matrix, steps) @ _validate_state_vector(
            state
        )

    def __repr__(self) -> str:
        return f"StochasticMatrix(a={self._a}, b={self._b})"

    def __str__(self) -> str:
        return np.array2string(self._matrix, precision=6, suppress_small=True)


E1_VECTOR: Final[NDArrayF64] = np.array([1.0, -1.0], dtype=np.float64)
E1_VECTOR.setflags(write=False)


@dataclass(frozen=True, eq=False)
class EigenSystem:
    eigenvalues: tuple[float, float]
    e0: NDArrayF64
    e1: NDArrayF64
    basis: NDArrayF64
    basis_inverse: NDArrayF64

    @property
    def lambda0(self) -> float:
        return self.eigenvalues[0]

    @property
    def lambda1(self) -> float:
        return self.eigenvalues[1]

    @property
    def stationary_distribution(self) -> NDArrayF64:
        return self.e0

    @property
    def is_oscillating(self) -> bool:
        return self.lambda1 < 0.0

    def to_eigenbasis(self, state: Any) -> NDArrayC128:
        return (self.basis_inverse @ _validate_state_vector(state)).astype(
            np.complex128
        )

    def from_eigenbasis(self, coordinates: NDArrayC128) -> NDArrayF64:
        return self.basis @ np.real(coordinates)


def _check_eigenpair(
    matrix: NDArrayF64, eigenvalue: float, eigenvector: NDArrayF64, index: int
) -> None:
    residual_norm = float(
        np.linalg.norm(matrix @ eigenvector - eigenvalue * eigenvector)
    )
    # NaN must fail this comparison too.
    if not residual_norm < EIGEN_TOLERANCE:
        raise EigenDecompositionError(
            f"Eigenpair {index} (lambda={eigenvalue}, e={eigenvector}) violates M e = lambda e: "
            f"residual norm {residual_norm:.3e} is not below {EIGEN_TOLERANCE:.0e}."
        )


def solve_eigensystem(stochastic_matrix: StochasticMatrix) -> EigenSystem:
    m = stochastic_matrix.matrix
    lambda0 = 1.0
    lambda1 = stochastic_matrix.a + stochastic_matrix.b - 1.0

    # [1, (lambda0 - m00) / m01] scaled by m01, so b = 1 needs no division.
    e0_unscaled = np.array([m[0, 1], lambda0 - m[0, 0]], dtype=np.float64)
    e0_sum = float(e0_unscaled.sum())
    if abs(e0_sum) < EIGEN_TOLERANCE:
        raise SingularBasisError(
            f"Eigenvectors of {stochastic_matrix!r} are linearly dependent "
            f"(lambda1 = lambda0 = 1); the basis change is not invertible."
        )
    e0 = e0_unscaled / e0_sum
    e1 = E1_VECTOR.copy()

    _check_eigenpair(m, lambda0, e0, 0)
    _check_eigenpair(m, lambda1, e1, 1)

    basis = np.column_stack((e0, e1))
    try:
        basis_inverse = np.linalg.inv(basis)
    except np.linalg.LinAlgError as e:
        raise SingularBasisError(
            f"Basis change matrix {basis.tolist()} is singular."
        ) from e
    if not np.all(np.isfinite(basis_inverse)):
        raise SingularBasisError(
            f"Inverse of basis change matrix {basis.tolist()} is not finite."
        )

    for array in (e0, e1, basis, basis_inverse):
        array.setflags(write=False)
    return EigenSystem(
        eigenvalues=(lambda0, lambda1),
        e0=e0,
        e1=e1,
        basis=basis,
        basis_inverse=basis_inverse,
    )


def fractional_power(value: float, exponent: Exponent) -> complex:
    """Raise a real number to a real exponent, branching into the complex plane.

    Negative bases use ``|value| ** t * exp(i * pi * t)``: the phase grows by
    pi for every whole step, so integer exponents alternate sign exactly like
    ``value ** n``. Non-negative bases stay on the real axis. Integral
    exponents (including ``Fraction(k * n, n)``) are evaluated as plain real
    powers and carry no imaginary part at all.
    """
    if float(exponent).is_integer():
        return complex(value ** int(exponent), 0.0)

    magnitude = abs(value) ** float(exponent)
    if value >= 0.0:
        return complex(magnitude, 0.0)

    theta = math.pi * float(exponent % 2)
    return complex(magnitude * math.cos(theta), magnitude * math.sin(theta))


class TrajectoryPoint(NamedTuple):
    x: float
    y: float
    residual: float


class TrajectoryGenerator:
    def __init__(
        self, eigensystem: EigenSystem, nth_root: int, cycles: int
    ) -> None:
        _validate_positive_ints(("nth_root", nth_root))
        _validate_non_negative_ints(("cycles", cycles))
        self._eigensystem: Final = eigensystem
        self._nth_root: Final = int(nth_root)
        self._cycles: Final = int(cycles)

    @property
    def nth_root(self) -> int:
        return self._nth_root

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def num_points(self) -> int:
        return self._nth_root * self._cycles + 1

    def _evolve_from_eigenbasis(
        self, p_init: NDArrayC128, k: int
    ) -> TrajectoryPoint:
        d_k = fractional_power(
            self._eigensystem.lambda1, Fraction(k, self._nth_root)
        )
        evolved = p_init * np.array([1.0, d_k], dtype=np.complex128)
        residual = abs(float(evolved[1].imag))
        x, y = self._eigensystem.from_eigenbasis(evolved)
        return TrajectoryPoint(float(x), float(y), residual)

    def evolve(self, state: Any, k: int) -> TrajectoryPoint:
        _validate_non_negative_ints(("k", k))
        p_init = self._eigensystem.to_eigenbasis(state)
        return self._evolve_from_eigenbasis(p_init, int(k))

    def generate(self, state: Any) -> list[TrajectoryPoint]:
        p_init = self._eigensystem.to_eigenbasis(state)
        return [
            self._evolve_from_eigenbasis(p_init, k)
            for k in range(self.num_points)
        ]


def trajectory_array(trajectory: Sequence[TrajectoryPoint]) -> NDArrayF64:
    return np.array(trajectory, dtype=np.float64).reshape(-1, 3)


def reference_state(
    stochastic_matrix: StochasticMatrix, state: Any, exponent: Exponent
) -> NDArrayC128:
    vector = _validate_state_vector(state)
    try:
        matrix_power = scipy.linalg.fractional_matrix_power(
            stochastic_matrix.matrix, float(exponent)
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        raise SimulationError(
            f"Reference fractional matrix power failed for exponent {exponent}: {e}"
        ) from e
    return np.asarray(matrix_power @ vector, dtype=np.complex128)


class CrossCheckResult(NamedTuple):
    max_fractional_deviation: float | None
    max_integer_deviation: float
    max_integer_residual: float


def has_fractional_reference(stochastic_matrix: StochasticMatrix) -> bool:
    # scipy's inverse scaling and squaring loses accuracy as lambda1 -> 0.
    with np.errstate(divide="ignore", invalid="ignore"):
        condition = float(np.linalg.cond(stochastic_matrix.matrix))
    return condition < MAX_REFERENCE_CONDITION


def cross_check(
    trajectory: Sequence[TrajectoryPoint],
    stochastic_matrix: StochasticMatrix,
    state: Any,
    nth_root: int,
) -> CrossCheckResult:
    _validate_positive_ints(("nth_root", nth_root))
    vector = _validate_state_vector(state)
    compare_fractional = has_fractional_reference(stochastic_matrix)

    max_fractional_deviation: float | None = 0.0 if compare_fractional else None
    max_integer_deviation = 0.0
    max_integer_residual = 0.0
    for k, point in enumerate(trajectory):
        emitted = np.array([point.x, point.y])
        if max_fractional_deviation is not None:
            reference = reference_state(
                stochastic_matrix, vector, Fraction(k, nth_root)
            )
            max_fractional_deviation = max(
                max_fractional_deviation,
                float(np.max(np.abs(reference.real - emitted))),
            )
        if k % nth_root == 0:
            exact = stochastic_matrix.power(vector, k // nth_root)
            max_integer_deviation = max(
                max_integer_deviation, float(np.max(np.abs(exact - emitted)))
            )
            max_integer_residual = max(max_integer_residual, point.residual)

    return CrossCheckResult(
        max_fractional_deviation, max_integer_deviation, max_integer_residual
    )


def _format_vector(vector: NDArrayF64) -> str:
    return np.array2string(
        np.asarray(vector), precision=6, suppress_small=True
    )


def format_report(
    stochastic_matrix: StochasticMatrix,
    eigensystem: EigenSystem,
    trajectory: Sequence[TrajectoryPoint],
    nth_root: int,
    include_points: bool = True,
) -> str:
    matrix_lines = str(stochastic_matrix).splitlines()
    lines = ["Stochastic Matrix"] + [f"  {row}" for row in matrix_lines]
    lines.append(
        f"Eigenvalues {_format_vector(np.array(eigensystem.eigenvalues))}"
    )
    lines.append(
        f"Eigenvectors e0={_format_vector(eigensystem.e0)} e1={_format_vector(eigensystem.e1)}"
    )

    if include_points:
        for k, point in enumerate(trajectory):
            lines.append(
                f"{k:>5d} ({point.x:.12f}, {point.y:.12f}, {point.residual:.3e})"
            )

    if trajectory:
        residuals = [point.residual for point in trajectory]
        peak_index = int(np.argmax(residuals))
        final_index = len(trajectory) - 1
        final = trajectory[-1]
        behaviour = (
            "oscillating (lambda1 < 0)"
            if eigensystem.is_oscillating
            else "monotone (lambda1 >= 0)"
        )
        lines.append(f"Points: {len(trajectory)} ({nth_root} per step), {behaviour}")
        lines.append(
            f"Max residual: {residuals[peak_index]:.6e} at k={peak_index} (t={peak_index / nth_root:.4f})"
        )
        lines.append(
            f"Final state (k={final_index}, t={final_index / nth_root:.4f}): ({final.x:.12f}, {final.y:.12f})"
        )
    lines.append(
        f"Stationary distribution: {_format_vector(eigensystem.stationary_distribution)}"
    )
    return "\n".join(lines)


class Visualizer:
    def __init__(self, config: VisConfig) -> None:
        self.config = config

    def _save_or_show(
        self,
        fig: matplotlib.figure.Figure,
        show_plot: bool,
        save_path: Path | None,
    ) -> None:
        try:
            if save_path:
                target_path = _ensure_output_dir(save_path)
                image_format = target_path.suffix.lstrip(".").lower() or None
                try:
                    fig.savefig(
                        target_path,
                        dpi=self.config.DPI,
                        bbox_inches="tight",
                        format=image_format,
                    )
                except (OSError, ValueError) as e:
                    raise VisualizationError(
                        f"Failed to save figure to {target_path}: {e}"
                    ) from e

            if show_plot:
                try:
                    plt.show()
                except Exception as e:
                    print(
                        f"Warning: Failed to display plot interactively: {e}",
                        file=sys.stderr,
                    )
        finally:
            plt.close(fig)

    @staticmethod
    def _draw_reference_lines(ax: Axes3D, eigensystem: EigenSystem) -> None:
        ax.plot([0.0, 0.0], [0.0, 1.0], [0.0, 0.0], color="black", linewidth=1.0)
        ax.plot([0.0, 1.0], [0.0, 0.0], [0.0, 0.0], color="black", linewidth=1.0)
        ax.plot(
            [1.0, 0.0],
            [0.0, 1.0],
            [0.0, 0.0],
            color="red",
            linewidth=1.0,
            label="probability simplex (along e1)",
        )
        ax.plot(
            [0.0, float(eigensystem.e0[0])],
            [0.0, float(eigensystem.e0[1])],
            [0.0, 0.0],
            color="green",
            linewidth=1.0,
            label="stationary direction e0",
        )

    def plot_trajectory(
        self,
        trajectory: Sequence[TrajectoryPoint],
        eigensystem: EigenSystem,
        show_plot: bool = True,
        save_path: Path | None = None,
    ) -> None:
        if not trajectory:
            print("Info: No trajectory points provided to plot.")
            return

        cfg = self.config
        points = trajectory_array(trajectory)
        fig: matplotlib.figure.Figure | None = None
        try:
            fig = plt.figure(figsize=cfg.FIGSIZE)
            ax: Axes3D = fig.add_subplot(111, projection="3d")

            self._draw_reference_lines(ax, eigensystem)
            ax.plot(
                points[:, 0],
                points[:, 1],
                points[:, 2],
                color="blue",
                alpha=cfg.TRAJECTORY_ALPHA,
                linewidth=cfg.TRAJECTORY_LINEWIDTH,
                label="trajectory",
            )
            ax.scatter(
                points[:, 0],
                points[:, 1],
                points[:, 2],
                color="blue",
                s=cfg.POINT_SIZE,
                depthshade=False,
            )
            if cfg.LABEL_POINTS:
                for index, (x, y, residual) in enumerate(points):
                    ax.text(
                        x + cfg.LABEL_OFFSET,
                        y,
                        residual,
                        str(index),
                        fontsize=cfg.LABEL_FONTSIZE,
                    )

            z_low, z_high = cfg.RESIDUAL_LIMITS
            z_high = max(z_high, float(points[:, 2].max()) * 1.05)
            ax.set_xlim(0.0, 1.0)
            ax.set_ylim(0.0, 1.0)
            ax.set_zlim(z_low, z_high)
            ax.set_xlabel("P(state A)")
            ax.set_ylabel("P(state B)")
            ax.set_zlabel("Imaginary residual")

            sign = "negative" if eigensystem.is_oscillating else "non-negative"
            ax.set_title(
                f"{cfg.TITLE} (lambda1 = {eigensystem.lambda1:.4g}, {sign})",
                fontsize=14,
            )
            ax.legend(fontsize="small", loc="upper left")

            fig_to_save, fig = fig, None
            self._save_or_show(fig_to_save, show_plot, save_path)

        except VisualizationError:
            raise
        except Exception as e:
            if fig:
                plt.close(fig)
            raise VisualizationError(
                f"Failed to plot trajectory: {e}"
            ) from e


class FractionalMarkovRunner:
    _FATAL = (EigenDecompositionError, SingularBasisError)

    def __init__(
        self,
        chain_config: ChainConfig | None = None,
        vis_config: VisConfig | None = None,
    ) -> None:
        try:
            self.c_cfg = chain_config or ChainConfig()
            self.v_cfg = vis_config or VisConfig()
        except ConfigError as e:
            raise ConfigError(
                f"Configuration initialization failed: {e}"
            ) from e

        self.stochastic_matrix = StochasticMatrix.from_config(self.c_cfg)
        self.initial_distribution = initial_distribution(
            self.c_cfg.INITIAL_STATE
        )
        self.visualizer = Visualizer(self.v_cfg)
        self.eigensystem: EigenSystem | None = None
        self.trajectory: list[TrajectoryPoint] = []
        self.cross_check_result: CrossCheckResult | None = None
        self.aborted = False

    def _run_task(
        self,
        task_name: str,
        task_func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> bool:
        print(f"\n--- Running {task_name} ---")
        start_time = time.monotonic()
        success = False
        try:
            task_func(*args, **kwargs)
            success = True
        except self._FATAL as e:
            print(
                f"FATAL during {task_name}: {type(e).__name__}: {e}",
                file=sys.stderr,
            )
            self.aborted = True
        except (
            SimulationError,
            VisualizationError,
            ConfigError,
        ) as e:
            print(
                f"ERROR during {task_name}: {type(e).__name__}: {e}",
                file=sys.stderr,
            )
        except Exception as e:
            print(
                f"UNEXPECTED ERROR during {task_name}: {type(e).__name__}: {e}",
                file=sys.stderr,
            )
            traceback.print_exc(file=sys.stderr)
        finally:
            elapsed_time = time.monotonic() - start_time
            status = "OK" if success else "FAILED"
            print(
                f"--- {task_name} {status} (Duration: {elapsed_time:.2f}s) ---"
            )
        return success

    def _require_trajectory(self) -> EigenSystem:
        if self.eigensystem is None or not self.trajectory:
            raise SimulationError(
                "No trajectory available. Run the analysis first."
            )
        return self.eigensystem

    def run_analysis(self, print_points: bool = True) -> bool:
        def task(include_points: bool):
            cfg = self.c_cfg
            print(
                f"Evolving p0={_format_vector(self.initial_distribution)} over {cfg.CYCLES} step(s) "
                f"at 1/{cfg.NTH_ROOT} resolution (a={cfg.A_SELF_TRANSITION}, b={cfg.B_SELF_TRANSITION})..."
            )
            self.eigensystem = solve_eigensystem(self.stochastic_matrix)
            generator = TrajectoryGenerator(
                self.eigensystem, cfg.NTH_ROOT, cfg.CYCLES
            )
            self.trajectory = generator.generate(self.initial_distribution)
            print(
                format_report(
                    self.stochastic_matrix,
                    self.eigensystem,
                    self.trajectory,
                    cfg.NTH_ROOT,
                    include_points=include_points,
                )
            )

        return self._run_task("Fractional Trajectory Analysis", task, print_points)

    def run_cross_check(self) -> bool:
        def task():
            self._require_trajectory()
            result = cross_check(
                self.trajectory,
                self.stochastic_matrix,
                self.initial_distribution,
                self.c_cfg.NTH_ROOT,
            )
            self.cross_check_result = result
            if result.max_fractional_deviation is None:
                print(
                    "Max deviation from scipy fractional_matrix_power: n/a "
                    f"(matrix is numerically singular, lambda1 = {self.stochastic_matrix.a + self.stochastic_matrix.b - 1.0:.3g})"
                )
            else:
                print(
                    f"Max deviation from scipy fractional_matrix_power: {result.max_fractional_deviation:.3e}"
                )
            print(
                f"Max deviation from integer matrix powers:         {result.max_integer_deviation:.3e}"
            )
            print(
                f"Max residual at integer steps:                    {result.max_integer_residual:.3e}"
            )
            if (
                result.max_fractional_deviation is not None
                and result.max_fractional_deviation > PRECISION_TOLERANCE
            ):
                print(
                    "Warning: Closed-form trajectory deviates from the scipy reference "
                    f"by more than {PRECISION_TOLERANCE:.0e}.",
                    file=sys.stderr,
                )
            if (
                result.max_integer_deviation > PRECISION_TOLERANCE
                or result.max_integer_residual > RESIDUAL_TOLERANCE
            ):
                print(
                    "Warning: Trajectory does not reproduce the discrete chain at integer steps.",
                    file=sys.stderr,
                )

        return self._run_task("Reference Cross-Check", task)

    def run_visualization(
        self, show_plot: bool = True, save_path: Path | None = None
    ) -> bool:
        def task(show: bool, path: Path | None):
            eigensystem = self._require_trajectory()
            print(f"Rendering {len(self.trajectory):,} trajectory points...")
            self.visualizer.plot_trajectory(
                self.trajectory, eigensystem, show_plot=show, save_path=path
            )
            if path and path.exists():
                print(f"Trajectory plot saved: {path.resolve()}")

        return self._run_task(
            "Trajectory Visualization", task, show_plot, save_path
        )

    def run_all(
        self,
        run_cross_check: bool = True,
        run_visualization: bool = True,
        show_plots: bool = True,
        save_outputs: bool = True,
        save_path: Path | None = None,
        print_points: bool = True,
    ) -> bool:
        max_width = 78
        title = "Fractional Markov Chain Evolution"
        print(
            f"\n{'*' * max_width}\n{title:^{max_width}}\n{'*' * max_width}"
        )
        overall_start_time = time.monotonic()

        plot_path = None
        if save_outputs:
            plot_path = save_path or (
                DEFAULT_OUTPUT_DIR / self.v_cfg.DEFAULT_PLOT_FILENAME
            )

        tasks_to_run = [
            (True, self.run_analysis, (print_points,)),
            (run_cross_check, self.run_cross_check, ()),
            (run_visualization, self.run_visualization, (show_plots, plot_path)),
        ]

        task_results: list[bool] = []
        for should_run, task_func, task_args in tasks_to_run:
            if not should_run:
                continue
            task_results.append(task_func(*task_args))
            if self.aborted:
                print(
                    "Aborting: the eigendecomposition is invalid, remaining tasks skipped.",
                    file=sys.stderr,
                )
                break

        overall_elapsed_time = time.monotonic() - overall_start_time
        overall_success = all(task_results) and not self.aborted

        print("\n--- Run Summary ---")
        print(f"Total execution time: {overall_elapsed_time:.2f} seconds.")
        status_message = (
            "All selected tasks completed successfully"
            if overall_success
            else "One or more tasks FAILED"
        )
        print(f"Overall status: {status_message}")
        print("*" * max_width + "\n")

        return overall_success


def _build_arg_parser() -> argparse.ArgumentParser:
    defaults = ChainConfig()
    parser = argparse.ArgumentParser(
        prog="fractional-markov",
        description=(
            "Evolve a two-state Markov chain at fractional time steps through the "
            "complex eigenbasis and plot the resulting trajectory."
        ),
        epilog=f"Figures are saved to {DEFAULT_OUTPUT_DIR} unless --output is given.",
    )
    parser.add_argument(
        "-a",
        "--a-self-transition",
        type=float,
        default=defaults.A_SELF_TRANSITION,
        help="probability of staying in state A",
    )
    parser.add_argument(
        "-b",
        "--b-self-transition",
        type=float,
        default=defaults.B_SELF_TRANSITION,
        help="probability of staying in state B",
    )
    parser.add_argument(
        "-i",
        "--initial-state",
        type=float,
        default=defaults.INITIAL_STATE,
        help="initial probability of state A",
    )
    parser.add_argument(
        "-n",
        "--nth-root",
        type=int,
        default=defaults.NTH_ROOT,
        help="sub-steps per discrete chain step",
    )
    parser.add_argument(
        "-c",
        "--cycles",
        type=int,
        default=defaults.CYCLES,
        help="number of discrete chain steps to simulate",
    )
    parser.add_argument(
        "-o", "--output", type=Path, default=None, help="figure path (.svg, .png, .pdf)"
    )
    parser.add_argument("--show", action="store_true", help="display the figure")
    parser.add_argument("--no-plot", action="store_true", help="skip rendering")
    parser.add_argument(
        "--no-cross-check",
        action="store_true",
        help="skip the scipy reference comparison",
    )
    parser.add_argument(
        "--quiet", action="store_true", help="omit per-point trajectory lines"
    )
    parser.add_argument(
        "--test", action="store_true", help="run the unit test suite"
    )
    parser.add_argument(
        "-v",
        "--verbosity",
        type=int,
        choices=(0, 1, 2),
        default=2,
        help="unit test verbosity (with --test)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    if args.test:
        return run_tests(verbosity_level=args.verbosity)

    plt.ioff()
    exit_code = 0
    try:
        chain_config = ChainConfig(
            A_SELF_TRANSITION=args.a_self_transition,
            B_SELF_TRANSITION=args.b_self_transition,
            INITIAL_STATE=args.initial_state,
            NTH_ROOT=args.nth_root,
            CYCLES=args.cycles,
        )
        runner = FractionalMarkovRunner(chain_config)
        success = runner.run_all(
            run_cross_check=not args.no_cross_check,
            run_visualization=not args.no_plot,
            show_plots=args.show,
            save_outputs=not args.no_plot,
            save_path=args.output,
            print_points=not args.quiet,
        )
        exit_code = 0 if success else 1

    except ConfigError as e:
        print(
            f"\nCRITICAL CONFIGURATION ERROR: {e}\nAborting.",
            file=sys.stderr,
        )
        exit_code = 2
    except Exception as e:
        print(
            f"\nCRITICAL UNHANDLED ERROR: {type(e).__name__}: {e}",
            file=sys.stderr,
        )
        traceback.print_exc(file=sys.stderr)
        exit_code = 3
    finally:
        plt.close("all")

    print(f"\nRun finished. Exiting with code {exit_code}.")
    return exit_code


class TestFractionalMarkovSuite(unittest.TestCase):
    test_output_dir: ClassVar[Path]
    run_id: ClassVar[str]
    test_chain_config: ClassVar[ChainConfig]
    test_vis_config: ClassVar[VisConfig]

    PARAMETER_GRID: ClassVar[tuple[tuple[float, float], ...]] = (
        (0.5, 0.1),
        (0.9, 0.9),
        (0.0, 0.0),
        (0.2, 0.3),
        (0.7, 0.05),
        (1.0, 0.4),
        (0.3, 1.0),
        (0.99, 0.01),
    )

    @classmethod
    def setUpClass(cls) -> None:
        cls.test_output_dir = DEFAULT_OUTPUT_DIR / "unit_tests"
        cls.test_output_dir.mkdir(parents=True, exist_ok=True)
        cls.run_id = uuid.uuid4().hex[:8]
        cls.test_chain_config = ChainConfig(NTH_ROOT=8, CYCLES=3)
        cls.test_vis_config = VisConfig(
            FIGSIZE=(4, 3),
            DPI=60,
            LABEL_POINTS=False,
            DEFAULT_PLOT_FILENAME=f"test_trajectory_{cls.run_id}.svg",
        )

    @classmethod
    def tearDownClass(cls) -> None:
        if not cls.test_output_dir.exists():
            return
        for f in cls.test_output_dir.glob(f"*_{cls.run_id}.*"):
            if f.is_file():
                f.unlink()
        if not any(cls.test_output_dir.iterdir()):
            cls.test_output_dir.rmdir()

    def _get_test_file_path(self, filename: str) -> Path:
        return self.test_output_dir / filename

    def _build(
        self, a: float, b: float, nth_root: int = 16, cycles: int = 4
    ) -> tuple[StochasticMatrix, EigenSystem, TrajectoryGenerator]:
        stochastic_matrix = StochasticMatrix(a, b)
        eigensystem = solve_eigensystem(stochastic_matrix)
        return (
            stochastic_matrix,
            eigensystem,
            TrajectoryGenerator(eigensystem, nth_root, cycles),
        )

    @staticmethod
    def _repeated_steps(matrix: NDArrayF64, state: NDArrayF64, steps: int) -> NDArrayF64:
        current = state.copy()
        for _ in range(steps):
            current = matrix @ current
        return current

    def test_A01_default_configs_are_valid(self) -> None:
        chain = ChainConfig()
        self.assertEqual(chain.A_SELF_TRANSITION, 0.5)
        self.assertEqual(chain.B_SELF_TRANSITION, 0.1)
        self.assertEqual(chain.INITIAL_STATE, 0.1)
        self.assertEqual(chain.NTH_ROOT, 32)
        self.assertEqual(chain.CYCLES, 5)
        self.assertTrue(VisConfig().DEFAULT_PLOT_FILENAME.endswith(".svg"))
        ChainConfig(A_SELF_TRANSITION=1, B_SELF_TRANSITION=0, CYCLES=0)

    def test_A02_invalid_config_parameters_raise_error(self) -> None:
        with self.assertRaisesRegex(ConfigError, "between 0.0 and 1.0"):
            ChainConfig(A_SELF_TRANSITION=1.5)
        with self.assertRaisesRegex(ConfigError, "between 0.0 and 1.0"):
            ChainConfig(B_SELF_TRANSITION=-0.1)
        with self.assertRaisesRegex(ConfigError, "between 0.0 and 1.0"):
            ChainConfig(INITIAL_STATE=2.0)
        with self.assertRaisesRegex(ConfigError, "positive integer"):
            ChainConfig(NTH_ROOT=0)
        with self.assertRaisesRegex(ConfigError, "positive integer"):
            ChainConfig(NTH_ROOT=2.5)
        with self.assertRaisesRegex(ConfigError, "non-negative integer"):
            ChainConfig(CYCLES=-1)
        with self.assertRaisesRegex(ConfigError, "positive integer"):
            VisConfig(FIGSIZE=(0, 3))
        with self.assertRaisesRegex(ConfigError, "lower bound"):
            VisConfig(RESIDUAL_LIMITS=(0.2, -0.2))
        with self.assertRaisesRegex(ConfigError, "exclusive"):
            VisConfig(TRAJECTORY_ALPHA=0.0)
        with self.assertRaisesRegex(ConfigError, "must end in"):
            VisConfig(DEFAULT_PLOT_FILENAME="trajectory.txt")

    def test_B01_stochastic_matrix_layout(self) -> None:
        stochastic_matrix = StochasticMatrix(0.5, 0.1)
        np.testing.assert_array_equal(
            stochastic_matrix.matrix, np.array([[0.5, 0.9], [0.5, 0.1]])
        )
        self.assertTrue(
            np.allclose(stochastic_matrix.matrix.sum(axis=0), 1.0),
            "Columns of the transition matrix must sum to 1.",
        )
        with self.assertRaises(ValueError):
            stochastic_matrix.matrix[0, 0] = 0.3
        self.assertEqual(
            repr(stochastic_matrix), "StochasticMatrix(a=0.5, b=0.1)"
        )

    def test_B02_matrix_power_matches_repeated_steps(self) -> None:
        stochastic_matrix = StochasticMatrix(0.3, 0.6)
        p0 = initial_distribution(0.25)
        for steps in range(6):
            np.testing.assert_allclose(
                stochastic_matrix.power(p0, steps),
                self._repeated_steps(stochastic_matrix.matrix, p0, steps),
                atol=1e-12,
            )
        np.testing.assert_allclose(
            stochastic_matrix.step(p0), stochastic_matrix.matrix @ p0
        )
        with self.assertRaisesRegex(SimulationError, "incompatible"):
            stochastic_matrix.step([0.2, 0.3, 0.5])

    def test_B03_out_of_range_parameters_are_not_validated(self) -> None:
        stochastic_matrix = StochasticMatrix(1.4, -0.2)
        np.testing.assert_allclose(
            stochastic_matrix.matrix, np.array([[1.4, 1.2], [-0.4, -0.2]])
        )

    def test_C01_closed_form_eigenvalues(self) -> None:
        for a, b in self.PARAMETER_GRID:
            with self.subTest(a=a, b=b):
                eigensystem = solve_eigensystem(StochasticMatrix(a, b))
                self.assertEqual(eigensystem.lambda0, 1.0)
                self.assertAlmostEqual(eigensystem.lambda1, a + b - 1.0, places=15)
                self.assertEqual(eigensystem.is_oscillating, a + b - 1.0 < 0.0)

    def test_C02_eigenpairs_satisfy_defining_equation(self) -> None:
        for a, b in self.PARAMETER_GRID:
            with self.subTest(a=a, b=b):
                stochastic_matrix = StochasticMatrix(a, b)
                eigensystem = solve_eigensystem(stochastic_matrix)
                m = stochastic_matrix.matrix
                for value, vector in (
                    (eigensystem.lambda0, eigensystem.e0),
                    (eigensystem.lambda1, eigensystem.e1),
                ):
                    self.assertLess(
                        np.linalg.norm(m @ vector - value * vector),
                        EIGEN_TOLERANCE,
                    )
                np.testing.assert_array_equal(eigensystem.e1, [1.0, -1.0])
                self.assertAlmostEqual(float(eigensystem.e0.sum()), 1.0, places=14)

    def test_C03_basis_change_round_trip(self) -> None:
        eigensystem = solve_eigensystem(StochasticMatrix(0.5, 0.1))
        np.testing.assert_allclose(
            eigensystem.basis @ eigensystem.basis_inverse,
            np.identity(2),
            atol=1e-14,
        )
        np.testing.assert_array_equal(eigensystem.basis[:, 0], eigensystem.e0)
        np.testing.assert_array_equal(eigensystem.basis[:, 1], eigensystem.e1)
        np.testing.assert_allclose(
            eigensystem.stationary_distribution, [0.9 / 1.4, 0.5 / 1.4]
        )

    def test_C04_degenerate_identity_chain_fails_fast(self) -> None:
        with self.assertRaises(SingularBasisError):
            solve_eigensystem(StochasticMatrix(1.0, 1.0))

    def test_C05_absorbing_state_b_is_supported(self) -> None:
        eigensystem = solve_eigensystem(StochasticMatrix(0.4, 1.0))
        np.testing.assert_allclose(eigensystem.e0, [0.0, 1.0])
        self.assertAlmostEqual(eigensystem.lambda1, 0.4)

    def test_C06_invalid_eigenpair_is_fatal(self) -> None:
        with self.assertRaises(EigenDecompositionError):
            solve_eigensystem(StochasticMatrix(float("nan"), 0.5))

    def test_D01_fractional_power_matches_integer_powers(self) -> None:
        for value in (-0.4, -1.0, -0.75, 0.0, 0.8, 1.0):
            for n in range(6):
                with self.subTest(value=value, n=n):
                    result = fractional_power(value, Fraction(3 * n, 3))
                    self.assertEqual(result.imag, 0.0)
                    self.assertAlmostEqual(result.real, value**n, places=14)

    def test_D02_fractional_power_negative_base_rotates(self) -> None:
        self.assertAlmostEqual(fractional_power(-4.0, Fraction(1, 2)), 2j, places=14)
        quarter = fractional_power(-1.0, 0.25)
        self.assertAlmostEqual(abs(quarter), 1.0, places=14)
        self.assertAlmostEqual(cmath.phase(quarter), math.pi / 4, places=14)
        for k in range(1, 40):
            exponent = Fraction(k, 7)
            with self.subTest(k=k):
                expected = cmath.exp(float(exponent) * cmath.log(complex(-0.4, 0.0)))
                self.assertAlmostEqual(
                    fractional_power(-0.4, exponent), expected, places=12
                )

    def test_D03_fractional_power_non_negative_base_stays_real(self) -> None:
        for k in range(0, 33):
            result = fractional_power(0.8, Fraction(k, 32))
            self.assertEqual(result.imag, 0.0)
            self.assertAlmostEqual(result.real, 0.8 ** (k / 32), places=14)

    def test_E01_default_scenario(self) -> None:
        stochastic_matrix, eigensystem, generator = self._build(
            0.5, 0.1, nth_root=32, cycles=5
        )
        self.assertAlmostEqual(eigensystem.lambda1, -0.4, places=15)
        p0 = initial_distribution(0.1)
        trajectory = generator.generate(p0)
        self.assertEqual(len(trajectory), 161)
        self.assertEqual(generator.num_points, 161)

        first = trajectory[0]
        self.assertAlmostEqual(first.x, 0.1, places=12)
        self.assertAlmostEqual(first.y, 0.9, places=12)
        self.assertEqual(first.residual, 0.0)

        expected_final = self._repeated_steps(stochastic_matrix.matrix, p0, 5)
        last = trajectory[160]
        self.assertAlmostEqual(last.x, float(expected_final[0]), delta=1e-9)
        self.assertAlmostEqual(last.y, float(expected_final[1]), delta=1e-9)
        self.assertLessEqual(last.residual, RESIDUAL_TOLERANCE)

    def test_E02_integer_steps_match_discrete_chain(self) -> None:
        for a, b in self.PARAMETER_GRID:
            with self.subTest(a=a, b=b):
                nth_root = 12
                stochastic_matrix, _, generator = self._build(
                    a, b, nth_root=nth_root, cycles=6
                )
                p0 = initial_distribution(0.35)
                trajectory = generator.generate(p0)
                for step in range(7):
                    point = trajectory[step * nth_root]
                    expected = self._repeated_steps(
                        stochastic_matrix.matrix, p0, step
                    )
                    self.assertLessEqual(point.residual, RESIDUAL_TOLERANCE)
                    np.testing.assert_allclose(
                        [point.x, point.y], expected, atol=PRECISION_TOLERANCE
                    )

    def test_E03_probability_is_conserved(self) -> None:
        for a, b in self.PARAMETER_GRID:
            with self.subTest(a=a, b=b):
                _, _, generator = self._build(a, b)
                for point in generator.generate(initial_distribution(0.8)):
                    self.assertAlmostEqual(
                        point.x + point.y, 1.0, delta=PRECISION_TOLERANCE
                    )

    def test_E04_positive_eigenvalue_has_no_residual(self) -> None:
        _, eigensystem, generator = self._build(0.9, 0.9, nth_root=32, cycles=5)
        self.assertAlmostEqual(eigensystem.lambda1, 0.8, places=15)
        trajectory = generator.generate(initial_distribution(0.1))
        self.assertTrue(all(point.residual == 0.0 for point in trajectory))

    def test_E05_negative_eigenvalue_leaves_the_real_axis(self) -> None:
        _, eigensystem, generator = self._build(0.5, 0.1, nth_root=32, cycles=1)
        p0 = initial_distribution(0.1)
        p_init = eigensystem.basis_inverse @ p0
        half_step = generator.evolve(p0, 16)
        self.assertAlmostEqual(
            half_step.residual, abs(p_init[1]) * math.sqrt(0.4), places=12
        )
        self.assertGreater(half_step.residual, RESIDUAL_TOLERANCE)

    def test_E06_generator_arguments(self) -> None:
        eigensystem = solve_eigensystem(StochasticMatrix(0.5, 0.1))
        with self.assertRaisesRegex(ConfigError, "nth_root"):
            TrajectoryGenerator(eigensystem, 0, 5)
        with self.assertRaisesRegex(ConfigError, "cycles"):
            TrajectoryGenerator(eigensystem, 4, -1)
        generator = TrajectoryGenerator(eigensystem, 4, 0)
        trajectory = generator.generate(initial_distribution(0.3))
        self.assertEqual(len(trajectory), 1)
        self.assertAlmostEqual(trajectory[0].x, 0.3, places=12)
        self.assertAlmostEqual(trajectory[0].y, 0.7, places=12)

    def test_E07_evolve_matches_generate(self) -> None:
        _, _, generator = self._build(0.2, 0.3, nth_root=5, cycles=3)
        p0 = initial_distribution(0.6)
        trajectory = generator.generate(p0)
        for k in (0, 3, 7, 15):
            self.assertEqual(generator.evolve(p0, k), trajectory[k])
        self.assertEqual(trajectory_array(trajectory).shape, (16, 3))

    def test_E08_generator_accepts_numpy_integers(self) -> None:
        eigensystem = solve_eigensystem(StochasticMatrix(0.5, 0.1))
        generator = TrajectoryGenerator(eigensystem, np.int64(32), np.int32(5))
        self.assertEqual(generator.num_points, 161)
        self.assertIsInstance(generator.nth_root, int)
        trajectory = generator.generate(initial_distribution(0.1))
        self.assertEqual(len(trajectory), 161)
        self.assertEqual(
            generator.evolve(initial_distribution(0.1), np.int64(64)), trajectory[64]
        )
        with self.assertRaisesRegex(ConfigError, "positive integer"):
            TrajectoryGenerator(eigensystem, True, 5)
        with self.assertRaisesRegex(ConfigError, "positive integer"):
            TrajectoryGenerator(eigensystem, np.float64(32.0), 5)

    def test_F01_scipy_reference_agrees(self) -> None:
        for a, b in ((0.5, 0.1), (0.9, 0.9), (0.2, 0.3)):
            with self.subTest(a=a, b=b):
                stochastic_matrix, _, generator = self._build(
                    a, b, nth_root=8, cycles=3
                )
                p0 = initial_distribution(0.1)
                trajectory = generator.generate(p0)
                result = cross_check(trajectory, stochastic_matrix, p0, 8)
                self.assertLess(result.max_fractional_deviation, PRECISION_TOLERANCE)
                self.assertLess(result.max_integer_deviation, PRECISION_TOLERANCE)
                self.assertLessEqual(result.max_integer_residual, RESIDUAL_TOLERANCE)

    @unittest.mock.patch("sys.stdout")
    @unittest.mock.patch("sys.stderr")
    def test_F02_singular_matrix_skips_fractional_reference(
        self, mock_stderr, mock_stdout
    ) -> None:
        for a, b in ((0.3, 0.7), (0.5, 0.5), (0.7, 0.3)):
            with self.subTest(a=a, b=b):
                stochastic_matrix, _, generator = self._build(
                    a, b, nth_root=8, cycles=3
                )
                self.assertFalse(has_fractional_reference(stochastic_matrix))
                p0 = initial_distribution(0.1)
                result = cross_check(
                    generator.generate(p0), stochastic_matrix, p0, 8
                )
                self.assertIsNone(result.max_fractional_deviation)
                self.assertLess(result.max_integer_deviation, PRECISION_TOLERANCE)
                self.assertLessEqual(result.max_integer_residual, RESIDUAL_TOLERANCE)

                mock_stderr.reset_mock()
                runner = FractionalMarkovRunner(
                    ChainConfig(
                        A_SELF_TRANSITION=a, B_SELF_TRANSITION=b, NTH_ROOT=8, CYCLES=3
                    ),
                    self.test_vis_config,
                )
                self.assertTrue(
                    runner.run_all(run_visualization=False, save_outputs=False)
                )
                stderr_text = "".join(
                    str(call.args[0]) for call in mock_stderr.write.call_args_list
                )
                self.assertNotIn("deviates from the scipy reference", stderr_text)
                self.assertNotIn("does not reproduce", stderr_text)
        self.assertTrue(has_fractional_reference(StochasticMatrix(0.5, 0.1)))

    def test_G01_report_contents(self) -> None:
        stochastic_matrix, eigensystem, generator = self._build(
            0.5, 0.1, nth_root=4, cycles=2
        )
        trajectory = generator.generate(initial_distribution(0.1))
        report = format_report(stochastic_matrix, eigensystem, trajectory, 4)
        self.assertIn("Stochastic Matrix", report)
        self.assertIn("Eigenvalues", report)
        self.assertIn("Eigenvectors", report)
        self.assertIn("oscillating", report)
        self.assertIn("Points: 9", report)
        quiet = format_report(
            stochastic_matrix, eigensystem, trajectory, 4, include_points=False
        )
        self.assertEqual(
            len(report.splitlines()) - len(quiet.splitlines()), len(trajectory)
        )

    @unittest.mock.patch("matplotlib.pyplot.show")
    def test_H01_visualization_saves_svg_and_png(self, mock_plt_show) -> None:
        _, eigensystem, generator = self._build(0.5, 0.1, nth_root=8, cycles=2)
        trajectory = generator.generate(initial_distribution(0.1))
        visualizer = Visualizer(self.test_vis_config)

        svg_path = self._get_test_file_path(
            self.test_vis_config.DEFAULT_PLOT_FILENAME
        )
        png_path = self._get_test_file_path(f"test_trajectory_{self.run_id}.png")
        try:
            visualizer.plot_trajectory(
                trajectory, eigensystem, show_plot=False, save_path=svg_path
            )
            self.assertTrue(svg_path.exists(), f"SVG not saved to {svg_path}")
            self.assertIn("<svg", svg_path.read_text(encoding="utf-8")[:2000])

            visualizer.plot_trajectory(
                trajectory, eigensystem, show_plot=False, save_path=png_path
            )
            with Image.open(png_path) as img:
                self.assertEqual(img.format, "PNG")
                self.assertEqual(img.mode, "RGBA")
                self.assertGreater(img.size[0], 0)
        finally:
            for path in (svg_path, png_path):
                if path.exists():
                    path.unlink()
        mock_plt_show.assert_not_called()

    @unittest.mock.patch("matplotlib.pyplot.show")
    @unittest.mock.patch("sys.stdout")
    def test_H02_visualization_handles_empty_trajectory(
        self, mock_stdout, mock_plt_show
    ) -> None:
        eigensystem = solve_eigensystem(StochasticMatrix(0.5, 0.1))
        visualizer = Visualizer(self.test_vis_config)
        visualizer.plot_trajectory([], eigensystem, show_plot=True, save_path=None)
        mock_plt_show.assert_not_called()

    @unittest.mock.patch("matplotlib.pyplot.show")
    def test_H03_save_failure_is_reported_once(self, mock_plt_show) -> None:
        _, eigensystem, generator = self._build(0.5, 0.1, nth_root=4, cycles=1)
        trajectory = generator.generate(initial_distribution(0.1))
        visualizer = Visualizer(self.test_vis_config)
        blocker = self._get_test_file_path(f"blocker_{self.run_id}.txt")
        blocker.write_text("not a directory", encoding="utf-8")
        try:
            with unittest.mock.patch(
                "matplotlib.pyplot.close", wraps=plt.close
            ) as mock_close:
                with self.assertRaises(VisualizationError) as ctx:
                    visualizer.plot_trajectory(
                        trajectory,
                        eigensystem,
                        show_plot=False,
                        save_path=blocker / "trajectory.svg",
                    )
            self.assertTrue(str(ctx.exception).startswith("Directory access error"))
            self.assertNotIn("Failed to plot trajectory", str(ctx.exception))
            self.assertEqual(mock_close.call_count, 1)
        finally:
            if blocker.exists():
                blocker.unlink()

    @unittest.mock.patch("matplotlib.pyplot.show")
    @unittest.mock.patch("sys.stdout")
    @unittest.mock.patch("sys.stderr")
    def test_I01_runner_full_execution(
        self, mock_stderr, mock_stdout, mock_plt_show
    ) -> None:
        runner = FractionalMarkovRunner(self.test_chain_config, self.test_vis_config)
        plot_path = self._get_test_file_path(
            self.test_vis_config.DEFAULT_PLOT_FILENAME
        )
        try:
            success = runner.run_all(
                show_plots=False, save_outputs=True, save_path=plot_path
            )
            self.assertTrue(success, "run_all reported failure, expected success.")
            self.assertTrue(plot_path.exists(), f"Plot file missing: {plot_path}")
            self.assertEqual(len(runner.trajectory), 8 * 3 + 1)
            self.assertIsNotNone(runner.cross_check_result)
        finally:
            if plot_path.exists():
                plot_path.unlink()

    @unittest.mock.patch("sys.stdout")
    @unittest.mock.patch("sys.stderr")
    def test_I02_runner_aborts_on_singular_basis(
        self, mock_stderr, mock_stdout
    ) -> None:
        config = ChainConfig(A_SELF_TRANSITION=1.0, B_SELF_TRANSITION=1.0)
        runner = FractionalMarkovRunner(config, self.test_vis_config)
        plot_path = self._get_test_file_path(f"test_singular_{self.run_id}.svg")
        success = runner.run_all(
            show_plots=False, save_outputs=True, save_path=plot_path
        )
        self.assertFalse(success)
        self.assertTrue(runner.aborted)
        self.assertEqual(runner.trajectory, [])
        self.assertFalse(plot_path.exists())

    @unittest.mock.patch("sys.stdout")
    @unittest.mock.patch("sys.stderr")
    def test_I03_runner_requires_analysis_before_cross_check(
        self, mock_stderr, mock_stdout
    ) -> None:
        runner = FractionalMarkovRunner(self.test_chain_config, self.test_vis_config)
        self.assertFalse(runner.run_cross_check())
        self.assertFalse(runner.aborted)

    @unittest.mock.patch("sys.stdout")
    @unittest.mock.patch("sys.stderr")
    def test_J01_main_exit_codes(self, mock_stderr, mock_stdout) -> None:
        self.assertEqual(main(["--no-plot", "--quiet", "-n", "4", "-c", "2"]), 0)
        self.assertEqual(main(["-a", "1", "-b", "1", "--no-plot"]), 1)
        self.assertEqual(main(["-a", "1.5", "--no-plot"]), 2)
        self.assertEqual(main(["-n", "0", "--no-plot"]), 2)


def run_tests(verbosity_level: int = 2) -> int:
    suite_name = TestFractionalMarkovSuite.__name__
    print(f"\n--- Running {suite_name} (fractional trajectory checks) ---")
    suite = unittest.TestLoader().loadTestsFromTestCase(
        TestFractionalMarkovSuite
    )
    result = unittest.TextTestRunner(
        verbosity=verbosity_level, buffer=True
    ).run(suite)

    failed = len(result.failures) + len(result.errors)
    status = "passed" if result.wasSuccessful() else "FAILED"
    print(
        f"\n--- {suite_name} {status}: {result.testsRun} run, {failed} failed, "
        f"{len(result.skipped)} skipped ---"
    )
    if failed:
        failing = sorted(
            test.id().rsplit(".", 1)[-1]
            for test, _ in result.failures + result.errors
        )
        print(f"Failing checks: {', '.join(failing)}", file=sys.stderr)

    return 0 if result.wasSuccessful() else 1


if __name__ == "__main__":
    sys.exit(main())
