import logging
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class PlatformId(str, Enum):
    JUPITER = "JUPITER"
    RAYDIUM_AMM = "RAYDIUM_AMM"
    RAYDIUM_CLMM = "RAYDIUM_CLMM"
    RAYDIUM_CPMM = "RAYDIUM_CPMM"
    ORCA_WHIRLPOOL = "ORCA_WHIRLPOOL"
    METEORA_DLMM = "METEORA_DLMM"
    PUMP_FUN = "PUMP_FUN"
    DEXLAB = "DEXLAB"
    FLUX_BEAM = "FLUX_BEAM"


class PlatformFingerprint(BaseModel):
    """Static log signature of one DEX program.

    A fingerprint matches when any log line contains any of its substrings.
    With `requires_program` set, the substring hit only counts if the program
    itself shows up in the logs as well.
    """
    model_config = ConfigDict(frozen=True)

    platform_id: PlatformId
    log_substrings: Tuple[str, ...]
    program_id: Optional[str] = None
    requires_program: bool = False

    def invoked(self, log_lines: Sequence[str]) -> bool:
        if not self.program_id:
            return False
        return any(self.program_id in line for line in log_lines)

    def matches(self, log_lines: Sequence[str]) -> bool:
        hit = any(s in line for line in log_lines for s in self.log_substrings)
        if not hit:
            return False
        if self.requires_program:
            return self.invoked(log_lines)
        return True


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_swap: bool
    platform: Optional[PlatformId] = None


SWAP_INSTRUCTION = "Program log: Instruction: Swap"

# Registration order is the tie-break when several platforms match.
DEFAULT_FINGERPRINTS: Tuple[PlatformFingerprint, ...] = (
    PlatformFingerprint(
        platform_id=PlatformId.JUPITER,
        program_id="JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
        log_substrings=(
            "Program log: Instruction: Route",
            "Program log: Instruction: SharedAccountsRoute",
            "Program log: Instruction: ExactOutRoute",
            "Program log: Instruction: SharedAccountsExactOutRoute",
        ),
    ),
    PlatformFingerprint(
        platform_id=PlatformId.RAYDIUM_AMM,
        program_id="675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
        log_substrings=("ray_log:",),
    ),
    PlatformFingerprint(
        platform_id=PlatformId.RAYDIUM_CLMM,
        program_id="CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK",
        log_substrings=(SWAP_INSTRUCTION,),
    ),
    PlatformFingerprint(
        platform_id=PlatformId.RAYDIUM_CPMM,
        program_id="CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C",
        log_substrings=(
            "Program log: Instruction: SwapBaseInput",
            "Program log: Instruction: SwapBaseOutput",
        ),
    ),
    PlatformFingerprint(
        platform_id=PlatformId.ORCA_WHIRLPOOL,
        program_id="whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc",
        log_substrings=(SWAP_INSTRUCTION, "Program log: Instruction: TwoHopSwap"),
    ),
    PlatformFingerprint(
        platform_id=PlatformId.METEORA_DLMM,
        program_id="LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo",
        log_substrings=(SWAP_INSTRUCTION,),
    ),
    PlatformFingerprint(
        platform_id=PlatformId.PUMP_FUN,
        program_id="6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P",
        log_substrings=("Program log: Instruction: Buy", "Program log: Instruction: Sell"),
        requires_program=True,
    ),
    PlatformFingerprint(
        platform_id=PlatformId.DEXLAB,
        program_id="DSwpgjMvXhtGn6BsbqmacdBZyfLj6jSWf3HJpdJtmg6N",
        log_substrings=(SWAP_INSTRUCTION,),
    ),
    # FluxBeam swaps only surface as token transfers
    PlatformFingerprint(
        platform_id=PlatformId.FLUX_BEAM,
        program_id="FLUXubRmkEi2q6K3Y9kBPg9248ggaZVsoSFhtJHSrm1X",
        log_substrings=("Program log: Instruction: Transfer",),
        requires_program=True,
    ),
)


class PlatformClassifier:
    def __init__(self, fingerprints: Iterable[PlatformFingerprint] = DEFAULT_FINGERPRINTS):
        self.fingerprints: List[PlatformFingerprint] = list(fingerprints)

    @classmethod
    def for_platforms(cls, platform_ids: Optional[Iterable[str]] = None) -> "PlatformClassifier":
        """Restrict the default table to the given platform ids (all when None)"""
        if platform_ids is None:
            return cls()
        wanted = {PlatformId(p.upper()) for p in platform_ids}
        return cls(fp for fp in DEFAULT_FINGERPRINTS if fp.platform_id in wanted)

    def classify(self, log_lines: Optional[Sequence[str]]) -> Classification:
        if not log_lines:
            return Classification(is_swap=False)

        matched = [fp for fp in self.fingerprints if fp.matches(log_lines)]
        if not matched:
            return Classification(is_swap=False)

        # Best effort: a generic swap marker without its program in the logs
        # still makes a swap, just an unattributed one.
        platform = next((fp.platform_id for fp in matched if fp.invoked(log_lines)), None)
        if platform is None:
            logger.debug("Swap detected but no registered program was invoked")
        return Classification(is_swap=True, platform=platform)
