"""Rendering of the ExecCredential object read by kubectl.

The exec-credential plugin protocol expects on stdout:

    {
      "kind": "ExecCredential",
      "apiVersion": "client.authentication.k8s.io/v1alpha1",
      "spec": {},
      "status": {"token": "<id token>"}
    }
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_core import PydanticSerializationError

from kube_oidc.exceptions import RenderError

EXEC_CREDENTIAL_KIND = "ExecCredential"
EXEC_CREDENTIAL_API_VERSION = "client.authentication.k8s.io/v1alpha1"


class ExecCredentialStatus(BaseModel):
    token: str


class ExecCredential(BaseModel):
    kind: Literal["ExecCredential"] = EXEC_CREDENTIAL_KIND
    api_version: Literal["client.authentication.k8s.io/v1alpha1"] = Field(
        default=EXEC_CREDENTIAL_API_VERSION, alias="apiVersion"
    )
    spec: dict[str, Any] = Field(default_factory=dict)
    status: ExecCredentialStatus


def build_exec_credential(token: str) -> ExecCredential:
    return ExecCredential(status=ExecCredentialStatus(token=token))


def render_exec_credential(token: str) -> str:
    """Serialize the exec credential for `token` as JSON.

    Raises:
        RenderError: The credential could not be serialized.
    """
    try:
        return build_exec_credential(token).model_dump_json(by_alias=True)
    except (PydanticSerializationError, ValueError) as e:
        raise RenderError(f"Could not render exec credential: {e}") from e
