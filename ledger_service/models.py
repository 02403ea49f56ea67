from pydantic import BaseModel, Field
from typing import Union


class AttestationModel(BaseModel):
    account_id: str
    nonce: str
    timestamp: int
    confidence_score: Union[str, float]
    signature: str


class IssueRequest(BaseModel):
    account_id: str
    attestation: AttestationModel


class TransferRequest(BaseModel):
    to: str
    amount: int = Field(gt=0)


class LockRequest(BaseModel):
    amount: int = Field(gt=0)
    duration: int = Field(gt=0)


class SweepRequest(BaseModel):
    account_id: str


class BridgeRequest(BaseModel):
    jurisdiction: str
    amount: int = Field(gt=0)


class CrossTransferRequest(BaseModel):
    from_jurisdiction: str
    to_jurisdiction: str
    recipient: str
    amount: int = Field(gt=0)


class RoleRequest(BaseModel):
    grantee: str
    role: str



class CallerKeyRequest(BaseModel):
    caller: str
    kid: str
    verify_key_b64: str
