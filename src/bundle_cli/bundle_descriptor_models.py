# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class DescriptorModel(BaseModel):
    """Base for descriptor models: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ApiClaim(DescriptorModel):
    """API claim of a microfrontend towards a microservice."""

    name: str
    type: Literal["internal", "external"]
    service_id: str = Field(alias="serviceId")
    bundle: Optional[str] = None


class EnvVariable(DescriptorModel):
    name: str
    value: Optional[str] = None


class MicroService(DescriptorModel):
    """Microservice declared in bundle.json."""

    name: str
    stack: Literal["spring-boot", "node"]
    health_check_path: Optional[str] = Field(default=None, alias="healthCheckPath")
    dbms: Optional[str] = None
    ingress_path: Optional[str] = Field(default=None, alias="ingressPath")
    roles: List[str] = Field(default_factory=list)
    env: List[EnvVariable] = Field(default_factory=list)


class MicroFrontend(DescriptorModel):
    """Microfrontend declared in bundle.json."""

    name: str
    stack: Literal["react", "angular"]
    custom_element: str = Field(alias="customElement")
    titles: Dict[str, str]
    group: str
    public_folder: Optional[str] = Field(default=None, alias="publicFolder")
    api_claims: List[ApiClaim] = Field(default_factory=list, alias="apiClaims")
    context_params: List[str] = Field(default_factory=list, alias="contextParams")


class BundleDescriptor(DescriptorModel):
    """Parsed and validated bundle.json."""

    name: str
    version: str
    description: Optional[str] = None
    type: Optional[str] = None
    microservices: List[MicroService]
    microfrontends: List[MicroFrontend]


class YamlComponents(DescriptorModel):
    widgets: List[str] = Field(default_factory=list)
    plugins: List[str] = Field(default_factory=list)


class YamlBundleDescriptor(DescriptorModel):
    """descriptor.yaml extracted from a published bundle image."""

    name: str
    description: Optional[str] = None
    descriptor_version: Optional[str] = Field(default=None, alias="descriptorVersion")
    components: YamlComponents = Field(default_factory=YamlComponents)
