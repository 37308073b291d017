# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

from __future__ import annotations

from typing import Any, Dict

from .clients import OrgMetadataClient
from .events import EventLog
from .model import OrgMetadata


def metadata_delta(current: OrgMetadata, want: OrgMetadata) -> Dict[str, Any]:
    """
    The fields of `want` that are set and differ from `current`. Fields that
    are None in `want` are left alone.
    """
    have = current._asdict()
    return {
        key: value
        for key, value in want._asdict().items()
        if value is not None and have[key] != value
    }


def configure_org_meta(
    client: OrgMetadataClient,
    org_name: str,
    want: OrgMetadata,
    events: EventLog,
) -> None:
    current = client.get_org(org_name)
    delta = metadata_delta(current, want)
    if len(delta) == 0:
        events.debug("org-unchanged", f"Metadata of {org_name} is up to date")
        return

    events.info(
        "edit-org",
        f"Updating metadata of {org_name}: {', '.join(sorted(delta))}",
    )
    client.edit_org(org_name, current._replace(**delta))
