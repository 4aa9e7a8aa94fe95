
from typing import List, Optional

from pydantic import BaseModel, Field


class CallerProof(BaseModel):
    caller: str
    issued_at: int
    nonce: str
    sig_b64: str


class SelfUpdateRequest(BaseModel):
    digest: str
    proof: CallerProof


class BatchUpdateRequest(BaseModel):
    identities: List[str] = Field(default_factory=list)
    digests: List[str] = Field(default_factory=list)
    proof: CallerProof


class RenounceSeederRequest(BaseModel):
    proof: CallerProof


class DigestResponse(BaseModel):
    identity: str
    digest: str
    cid: Optional[str] = None


class SeederResponse(BaseModel):
    seeder: Optional[str] = None
