"""FlinkApplication operator entrypoint.

This file is the **stable Uvicorn entrypoint** for the operator container:

- Docker: `uvicorn main:app --host 0.0.0.0 --port 8080`
- Directly: `python main.py` (port from `OPERATOR_HTTP_PORT`)
- K8s probes: `GET /healthz`, `GET /readyz`

Starting the app starts the controller: the FlinkApplication informer, the
reconciler thread and the status poller thread.

## Configuration (environment variables)

Configuration is loaded in `src/config.py` (see `Settings`), via env vars:

- `K8S_NAMESPACE`, `OPERATOR_NAME`, `WORK_QUEUE_CAPACITY`
- `STATUS_POLL_INTERVAL`, `TEARDOWN_POLL_INTERVAL`, `TEARDOWN_TIMEOUT`
- `FLINK_REST_PORT`, `FLINK_REST_URL_TEMPLATE`, `INGRESS_DOMAIN`
- `SAVEPOINT_POLL_INTERVAL`, `SAVEPOINT_TIMEOUT`

## Code organization

- `src/config.py`: settings + env loading
- `src/clients/*`: Kubernetes and Flink REST clients, deployer, informer
- `src/core/*`: models, effective configuration, registry/ledger, work queue,
  ingress publication
- `src/core/services/*`: reconciler, status poller, controller
- `src/api/*`: FastAPI app factory, routes, middleware
"""

import uvicorn

from api.app import create_app
from config import get_settings
from foundation.logger import LOGGING_CONFIG

app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=get_settings().operator.http_port, log_config=LOGGING_CONFIG)
