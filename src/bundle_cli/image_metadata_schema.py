# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# Subset of the OCI image config returned by `crane config` that bundle images rely on
image_config_schema = {
    "type": "object",
    "required": ["config"],
    "properties": {
        "config": {
            "type": "object",
            "properties": {
                "Labels": {
                    "type": ["object", "null"],
                    "additionalProperties": {"type": "string"},
                },
            },
        },
    },
}

# Subset of the OCI image manifest returned by `crane manifest`
image_manifest_schema = {
    "type": "object",
    "required": ["layers"],
    "properties": {
        "layers": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["digest"],
                "properties": {
                    "digest": {"type": "string", "minLength": 1},
                    "mediaType": {"type": "string"},
                    "size": {"type": "integer"},
                },
            },
        },
    },
}
