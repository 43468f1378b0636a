import enum
from dataclasses import dataclass


class Support(enum.Enum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    # uses by value a type that is declared but never defined, or never declared at all
    UNDECLARED = "undeclared"


@dataclass(frozen=True)
class Classification:
    support: Support
    reason: str = ""

    @property
    def is_supported(self) -> bool:
        return self.support == Support.SUPPORTED

    def __str__(self):
        if not self.reason:
            return self.support.value
        return f"{self.support.value}: {self.reason}"


SUPPORTED = Classification(Support.SUPPORTED)
