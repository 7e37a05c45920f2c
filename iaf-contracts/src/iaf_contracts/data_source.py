"""
Data source catalog contract.

Data sources are curated, read-only credential bundles registered by
platform operators. They are cluster-global: every session sees the same
catalog, but only ever sees metadata and the environment variable names an
attachment would inject, never the referenced credential or its location.
"""
from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field, field_validator

from .naming import validate_env_var_name


class DataSourceSecretRef(BaseModel):
    """Location of the operator-managed credential backing a data source."""

    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)


class DataSource(BaseModel):
    name: str = Field(..., min_length=1)
    kind: str = Field(..., min_length=1, description="e.g. postgres, mysql, s3, http-api, kafka")
    description: str = ""
    schema_description: str = Field(default="", description="Tables, endpoints or topics exposed.")
    tags: List[str] = Field(default_factory=list)
    secret_ref: DataSourceSecretRef
    env_var_mapping: Dict[str, str] = Field(
        default_factory=dict,
        description="Credential key -> environment variable name injected into workloads.",
    )

    @field_validator("env_var_mapping")
    @classmethod
    def _valid_env_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        for env_name in value.values():
            validate_env_var_name(env_name)
        if len(set(value.values())) != len(value):
            raise ValueError("env_var_mapping maps two credential keys to the same variable")
        return value

    def env_var_names(self) -> List[str]:
        return sorted(self.env_var_mapping.values())

    def has_all_tags(self, required: List[str]) -> bool:
        return set(required).issubset(self.tags)

    def summary(self, *, detailed: bool = False) -> dict:
        """Caller-facing view: metadata and variable names only."""
        result: dict = {
            "name": self.name,
            "kind": self.kind,
            "env_var_names": self.env_var_names(),
        }
        if self.description:
            result["description"] = self.description
        if self.tags:
            result["tags"] = list(self.tags)
        if detailed and self.schema_description:
            result["schema"] = self.schema_description
        return result


__all__ = ["DataSource", "DataSourceSecretRef"]
