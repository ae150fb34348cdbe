"""
Registration Errors

Failure kinds raised inside the ICP loop. `NeighborSearchFailed` and
`InsufficientCorrespondences` abort a registration call and are reported to
the caller through the result; `DegenerateRobustFit` never leaves the
correspondence rejection step.
"""


class RegistrationError(RuntimeError):
    """Base class for failures of a registration call."""

    stage: str = "registration"


class NeighborSearchFailed(RegistrationError):
    """No nearest neighbour could be found in the target for a source point."""

    stage = "correspondence_search"

    def __init__(self, point_index: int):
        self.point_index = int(point_index)
        super().__init__(
            f"Unable to find a nearest neighbor in the target dataset for point "
            f"{self.point_index} in the source"
        )


class InsufficientCorrespondences(RegistrationError):
    """Fewer correspondences survived filtering than the estimator requires."""

    stage = "correspondence_rejection"

    def __init__(self, actual: int, required: int):
        self.actual = int(actual)
        self.required = int(required)
        super().__init__(
            f"Not enough correspondences found ({self.actual} < {self.required}). "
            "Relax your threshold parameters."
        )


class DegenerateRobustFit(RegistrationError):
    """The robust estimator could not fit any model better than the trivial one."""

    stage = "correspondence_rejection"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Robust model fit is degenerate: {reason}")
