import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import google.auth
from fastapi import Request
from google.cloud import bigquery

from bqreport.core.errors import ConfigurationError, WarehouseConnectionError

logger = logging.getLogger(__name__)


@dataclass
class Warehouse:
    """
    Long-lived BigQuery handle shared by every request.

    Nothing request-scoped is stored on it, so concurrent requests can use
    it without locking.
    """

    client: Any
    location: Optional[str] = None

    def close(self):
        self.client.close()


def connect(
    project_id: str,
    location: Optional[str] = None,
    credentials_json: Optional[str] = None,
    credentials_file: Optional[str] = None,
) -> Warehouse:
    """
    Build a BigQuery client for `project_id`.

    Credential sources, first match wins:
        1. inline credential JSON (service account, authorized user,
           external account, ...)
        2. credential file path
        3. Application Default Credentials (local dev, GCE, Cloud Run)

    Raises:
        ConfigurationError: project_id is empty
        WarehouseConnectionError: the chosen source failed, tagged with its name
    """
    if not project_id:
        raise ConfigurationError(
            "connect", "missing GOOGLE_CLOUD_PROJECT (or PROJECT_ID)"
        )
    location = location or None

    if credentials_json:
        try:
            info = json.loads(credentials_json)
            credentials, _ = google.auth.load_credentials_from_dict(info)
            client = bigquery.Client(
                project=project_id, credentials=credentials, location=location
            )
        except Exception as error:
            raise WarehouseConnectionError("json", error) from error
        logger.info(f"BigQuery client ready (json credentials, project={project_id})")
        return Warehouse(client=client, location=location)

    if credentials_file:
        try:
            credentials, _ = google.auth.load_credentials_from_file(credentials_file)
            client = bigquery.Client(
                project=project_id, credentials=credentials, location=location
            )
        except Exception as error:
            raise WarehouseConnectionError("file", error) from error
        logger.info(f"BigQuery client ready (file credentials, project={project_id})")
        return Warehouse(client=client, location=location)

    try:
        client = bigquery.Client(project=project_id, location=location)
    except Exception as error:
        raise WarehouseConnectionError("ADC", error) from error
    logger.info(f"BigQuery client ready (ADC, project={project_id})")
    return Warehouse(client=client, location=location)


# This is the "Bridge" that gives the routes access to the shared warehouse
def get_warehouse(request: Request) -> Warehouse:
    return request.app.state.warehouse
