"""JSON text for envelope trees (orjson when installed)."""
import json
try:
    import orjson  # type: ignore
    def dumps(o) -> str:
        return orjson.dumps(o).decode()
    loads = orjson.loads
    backend = lambda: "orjson"
except ModuleNotFoundError:
    dumps = lambda o: json.dumps(o, separators=(",", ":"))
    loads = json.loads
    backend = lambda: "stdlib"
