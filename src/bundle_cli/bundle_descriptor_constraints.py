# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import re

from bundle_cli.constraints import (
    FieldConstraint,
    FieldType,
    ObjectConstraints,
    PatternRule,
    UnionConstraint,
)

# Component and bundle names end up in Docker image references, which must be lowercase
ALLOWED_NAME_REGEXP = re.compile(r"[a-z0-9]+(?:[._-][a-z0-9]+)*")
INVALID_NAME_MESSAGE = (
    "Only lowercase alphanumeric characters, dots, underscores and dashes are allowed, "
    "and the name must start and end with an alphanumeric character"
)

# Versions are used as Docker image tags
ALLOWED_VERSION_REGEXP = re.compile(r"[\w](?:[\w.-]{0,126}[\w])?", re.ASCII)
INVALID_VERSION_MESSAGE = "Version must be a valid Docker tag"

MICROFRONTEND_STACKS = ("react", "angular")
MICROSERVICE_STACKS = ("spring-boot", "node")
DBMS_VALUES = ("none", "embedded", "postgresql", "mysql")

_NAME = FieldConstraint(
    FieldType.STRING,
    required=True,
    pattern=PatternRule(ALLOWED_NAME_REGEXP, INVALID_NAME_MESSAGE),
)

_VERSION = FieldConstraint(
    FieldType.STRING,
    required=True,
    pattern=PatternRule(ALLOWED_VERSION_REGEXP, INVALID_VERSION_MESSAGE),
)

INTERNAL_API_CLAIM_CONSTRAINTS: ObjectConstraints = {
    "name": FieldConstraint(FieldType.STRING, required=True),
    "type": FieldConstraint(FieldType.STRING, required=True),
    "serviceId": FieldConstraint(FieldType.STRING, required=True),
}

EXTERNAL_API_CLAIM_CONSTRAINTS: ObjectConstraints = {
    "name": FieldConstraint(FieldType.STRING, required=True),
    "type": FieldConstraint(FieldType.STRING, required=True),
    "serviceId": FieldConstraint(FieldType.STRING, required=True),
    "bundle": FieldConstraint(FieldType.STRING, required=True),
}

API_CLAIM_UNION = UnionConstraint(
    discriminator="type",
    variants={
        "internal": INTERNAL_API_CLAIM_CONSTRAINTS,
        "external": EXTERNAL_API_CLAIM_CONSTRAINTS,
    },
)

ENV_VARIABLE_CONSTRAINTS: ObjectConstraints = {
    "name": FieldConstraint(FieldType.STRING, required=True),
    "value": FieldConstraint(FieldType.STRING),
}

MICROSERVICE_CONSTRAINTS: ObjectConstraints = {
    "name": _NAME,
    "stack": FieldConstraint(
        FieldType.STRING, required=True, allowed_values=MICROSERVICE_STACKS
    ),
    "healthCheckPath": FieldConstraint(FieldType.STRING),
    "dbms": FieldConstraint(FieldType.STRING, allowed_values=DBMS_VALUES),
    "ingressPath": FieldConstraint(FieldType.STRING),
    "roles": FieldConstraint(FieldType.ARRAY, items=FieldConstraint(FieldType.STRING)),
    "env": FieldConstraint(
        FieldType.ARRAY,
        items=FieldConstraint(FieldType.OBJECT, properties=ENV_VARIABLE_CONSTRAINTS),
    ),
}

MICROFRONTEND_CONSTRAINTS: ObjectConstraints = {
    "name": _NAME,
    "stack": FieldConstraint(
        FieldType.STRING, required=True, allowed_values=MICROFRONTEND_STACKS
    ),
    "customElement": FieldConstraint(FieldType.STRING, required=True),
    "titles": FieldConstraint(FieldType.MAP, required=True, value_type=FieldType.STRING),
    "group": FieldConstraint(FieldType.STRING, required=True),
    "publicFolder": FieldConstraint(FieldType.STRING),
    "apiClaims": FieldConstraint(
        FieldType.ARRAY,
        items=FieldConstraint(FieldType.UNION, union=API_CLAIM_UNION),
    ),
    "contextParams": FieldConstraint(FieldType.ARRAY, items=FieldConstraint(FieldType.STRING)),
}

BUNDLE_DESCRIPTOR_CONSTRAINTS: ObjectConstraints = {
    "name": _NAME,
    "version": _VERSION,
    "description": FieldConstraint(FieldType.STRING),
    "type": FieldConstraint(FieldType.STRING, allowed_values=("bundle",)),
    "microservices": FieldConstraint(
        FieldType.ARRAY,
        required=True,
        items=FieldConstraint(FieldType.OBJECT, properties=MICROSERVICE_CONSTRAINTS),
    ),
    "microfrontends": FieldConstraint(
        FieldType.ARRAY,
        required=True,
        items=FieldConstraint(FieldType.OBJECT, properties=MICROFRONTEND_CONSTRAINTS),
    ),
}

# descriptor.yaml packaged at the root of the first layer of a bundle image
YAML_BUNDLE_DESCRIPTOR_CONSTRAINTS: ObjectConstraints = {
    "name": _NAME,
    "description": FieldConstraint(FieldType.STRING),
    "descriptorVersion": FieldConstraint(FieldType.STRING, allowed_values=("v5",)),
    "components": FieldConstraint(
        FieldType.OBJECT,
        properties={
            "widgets": FieldConstraint(FieldType.ARRAY, items=FieldConstraint(FieldType.STRING)),
            "plugins": FieldConstraint(FieldType.ARRAY, items=FieldConstraint(FieldType.STRING)),
        },
    ),
}
