"""
DataSource

Entry point of the connector: owns the HTTP client, the store client and the
connector for one database, and produces model classes bound to them.

    async with DataSource(ConnectorConfig(database="people")) as ds:
        Person = ds.create_model("person", {"name": str, "age": int})
        await ds.autoupdate()
        await Person.create({"name": "Charlie", "age": 24})
"""

import logging
from typing import Any, Dict, Optional, Type

import httpx

from src.connector.config import ConnectorConfig, get_config
from src.connector.connector import CouchConnector
from src.connector.model import Model, ModelDefinition
from src.connector.services.couch_client import DESIGN_PREFIX, CouchClient

logger = logging.getLogger(__name__)


class DataSource:
    """
    One database, its connector, and the models defined on it.

    An httpx client passed in is shared and left open on close(); one
    created here is owned and closed.
    """

    def __init__(
        self,
        config: Optional[ConnectorConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize data source.

        Args:
            config: Connector configuration (defaults to the global config)
            http_client: Shared httpx client (optional)
        """
        self.config = config or get_config()
        if self.config.log_level:
            logging.getLogger("src.connector").setLevel(self.config.log_level.upper())
        self._owns_client = http_client is None
        if http_client is None:
            timeout = httpx.Timeout(
                self.config.http_read_timeout,
                connect=self.config.http_connect_timeout,
            )
            auth = None
            if self.config.username:
                auth = httpx.BasicAuth(self.config.username, self.config.password or "")
            http_client = httpx.AsyncClient(timeout=timeout, auth=auth)

        self.http_client = http_client
        self.client = CouchClient(
            database=self.config.database,
            base_url=self.config.url,
            http_client=http_client,
        )
        self.connector = CouchConnector(self.client, self.config)
        self.models: Dict[str, Type[Model]] = {}

        logger.info(
            f"DataSource configured: url={self.config.url}, database={self.config.database}, "
            f"revision_policy={self.config.revision_policy}"
        )

    async def __aenter__(self) -> "DataSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    # =========================================================
    # Models
    # =========================================================

    def create_model(self, name: str, properties: Optional[Dict[str, Any]] = None) -> Type[Model]:
        """
        Define a model and return its class, bound to this data source.

        Redefining a name replaces the previous model.
        """
        definition = ModelDefinition(name, properties)
        model_cls = type(
            definition.name.title().replace("-", "").replace("_", ""),
            (Model,),
            {"definition": definition, "connector": self.connector},
        )
        self.models[name] = model_cls
        logger.debug(f"Model defined: {name} (id field: {definition.id_field})")
        return model_cls

    def get_model(self, name: str) -> Type[Model]:
        return self.models[name]

    # =========================================================
    # Database lifecycle
    # =========================================================

    async def ping(self) -> bool:
        return await self.client.check_health()

    async def create_database(self) -> bool:
        return await self.client.create_database()

    async def destroy_database(self) -> bool:
        return await self.client.destroy_database()

    async def autoupdate(self) -> None:
        """
        Bring the database up to date without losing data.

        Creates the database if missing, upserts configured design documents
        and ensures a Mango index on the model key.
        """
        if not await self.client.database_exists():
            await self.client.create_database()

        for name, body in self.config.design_docs.items():
            doc_id = name if name.startswith(DESIGN_PREFIX) else f"{DESIGN_PREFIX}{name}"
            current = await self.client.get_document(doc_id)
            rev = current["_rev"] if current else None
            if current is not None and _strip_meta(current) == _strip_meta(body):
                continue
            await self.client.put_document(doc_id, body, rev=rev)
            logger.info(f"Design document updated: {doc_id}")

        await self.client.create_index([self.config.model_key], name=f"{self.config.model_key}-index")

    async def automigrate(self) -> None:
        """Destroy and recreate the database, then autoupdate. All data is lost."""
        await self.client.destroy_database()
        await self.autoupdate()


def _strip_meta(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k not in ("_id", "_rev")}
