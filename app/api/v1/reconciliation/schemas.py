from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ReconciliationRequest(BaseModel):
    # library | finance | transport; all passes when omitted
    passes: Optional[List[str]] = Field(None, min_length=1)


class PassResult(BaseModel):
    """Rows examined, rows whose projection had drifted and was rewritten, and rows left for a person to fix."""

    examined: Dict[str, int] = Field(default_factory=dict)
    corrected: Dict[str, int] = Field(default_factory=dict)
    alerts_opened: int = 0
    # Rows whose sources disagree in a way no projection can repair
    unresolved: Dict[str, int] = Field(default_factory=dict)


class ReconciliationResponse(BaseModel):
    started_at: datetime
    finished_at: datetime
    results: Dict[str, PassResult]
