from abc import abstractmethod

import uvicorn
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from loguru import logger

from workloadsteal.config import ServerConfig
from workloadsteal.exceptions import ListenerError


class WebServer:
    """Async web server for admission webhooks using FastAPI."""

    def __init__(self, config: ServerConfig):
        self.config = config
        self.app = FastAPI(debug=config.debug, default_response_class=ORJSONResponse)
        self._setup_routes()

    @abstractmethod
    def _setup_routes(self):
        """
        Setup web routes.
        Example:
        self.app.add_api_route('/route', self.handle_route, methods=["GET"])
        """
        raise NotImplementedError()

    def build_server(self, port: int) -> uvicorn.Server:
        uvicorn_kwargs = {}
        if not self.config.insecure:
            uvicorn_kwargs["ssl_certfile"] = str(self.config.tls_cert_path)
            uvicorn_kwargs["ssl_keyfile"] = str(self.config.tls_key_path)

        config = uvicorn.Config(
            self.app,
            host=self.config.bind_address,
            port=port,
            log_level="debug" if self.config.debug else "info",
            log_config=None,
            **uvicorn_kwargs,
        )
        return uvicorn.Server(config)

    async def serve(self, port: int):
        """
        Run a single Uvicorn server instance on the given port until it exits.

        Uvicorn reports startup failures (port in use, bad certificate) with
        ``sys.exit``; they are raised here as :class:`ListenerError`.
        """
        server = self.build_server(port)
        logger.info(
            "Starting server on {}:{} (TLS: {})",
            self.config.bind_address,
            port,
            not self.config.insecure,
        )
        try:
            await server.serve()
        except SystemExit as e:
            raise ListenerError(port, f"server exited during startup (code {e.code})") from e
        if not server.started:
            raise ListenerError(port, "server did not start")
