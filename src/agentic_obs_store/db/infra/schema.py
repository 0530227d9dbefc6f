# schema.py
"""
Declarative schema. Table order is creation order (parents before children).
Rendered into DDL by db/infra/migrations.py.
"""

SCHEMA = {
    "schema_version": {
        "columns": {
            "version": "INTEGER PRIMARY KEY",
            "applied_at": "TIMESTAMP NOT NULL",
        },
    },

    # durable settings: connection, feature toggles, dashboard server
    "config": {
        "columns": {
            "key": "TEXT PRIMARY KEY",
            "value": "TEXT NOT NULL",
            "updated_at": "TIMESTAMP NOT NULL",
        },
    },

    # mutable runtime state: first run flag, last connection, ...
    "state": {
        "columns": {
            "key": "TEXT PRIMARY KEY",
            "value": "TEXT",
            "updated_at": "TIMESTAMP NOT NULL",
        },
    },

    "presets": {
        "columns": {
            "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
            "name": "TEXT NOT NULL UNIQUE",
            "target": "TEXT NOT NULL",
            # JSON list of {"name", "visible", "settings"?}
            "elements": "TEXT",
            "created_at": "TIMESTAMP NOT NULL",
        },
    },

    "capture_sources": {
        "columns": {
            "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
            "name": "TEXT NOT NULL UNIQUE",
            "target": "TEXT NOT NULL",
            "cadence_ms": "INTEGER NOT NULL DEFAULT 5000",
            # png | jpg
            "format": "TEXT NOT NULL DEFAULT 'png'",
            "width": "INTEGER NOT NULL DEFAULT 0",
            "height": "INTEGER NOT NULL DEFAULT 0",
            "quality": "INTEGER NOT NULL DEFAULT 80",
            "enabled": "INTEGER NOT NULL DEFAULT 1",
            "created_at": "TIMESTAMP NOT NULL",
            "updated_at": "TIMESTAMP NOT NULL",
        },
    },

    "captured_images": {
        "columns": {
            "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
            "source_id": "INTEGER NOT NULL",
            # base64-encoded image bytes
            "payload": "TEXT NOT NULL",
            "mime_type": "TEXT NOT NULL",
            "captured_at": "TIMESTAMP NOT NULL",
            "size_bytes": "INTEGER NOT NULL DEFAULT 0",
        },
        "constraints": {
            "foreign_keys": [
                {
                    "column": "source_id",
                    "references": "capture_sources(id)",
                    "on_delete": "CASCADE",
                }
            ],
        },
    },

    "action_log": {
        "columns": {
            "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
            "label": "TEXT NOT NULL",
            "operation_name": "TEXT",
            "input": "TEXT",
            "output": "TEXT",
            "success": "INTEGER NOT NULL DEFAULT 0",
            "duration_ms": "INTEGER NOT NULL DEFAULT 0",
            "created_at": "TIMESTAMP NOT NULL",
        },
    },
}

# (index name, table, columns)
INDEXES = [
    ("idx_config_updated_at", "config", ["updated_at"]),
    ("idx_state_updated_at", "state", ["updated_at"]),
    ("idx_presets_target", "presets", ["target"]),
    ("idx_captured_images_source_time", "captured_images", ["source_id", "captured_at"]),
    ("idx_action_log_created_at", "action_log", ["created_at"]),
    ("idx_action_log_operation_name", "action_log", ["operation_name"]),
]
