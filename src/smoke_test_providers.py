from pathlib import Path
import os

from dotenv import load_dotenv

from gpt4sheets.api_keys import get_api_key
from gpt4sheets.property_store import PropertyStore
from gpt4sheets.providers import MODEL_TABLE, ModelRequest, invoke_model


def main() -> None:
    # Always load .env from repo root
    root = Path(__file__).resolve().parents[1]
    load_dotenv(root / ".env", override=True)

    store = PropertyStore()
    only = os.getenv("SMOKE_PROVIDER", "").strip().lower()
    for provider, models in MODEL_TABLE.items():
        if only and provider.value != only:
            continue
        api_key = get_api_key(store, provider)
        if not api_key:
            print(f"{provider.value}: SKIP (no API key)")
            continue
        request = ModelRequest(
            system_prompt="You are a helpful assistant",
            prompt="Reply with exactly: OK",
            model=models[0],
        )
        result = invoke_model(request, api_key)
        if result.ok:
            print(f"{provider.value} ({models[0]}): {result.value}")
        else:
            print(f"{provider.value} ({models[0]}): FAILED {result.error.message}")


if __name__ == "__main__":
    main()
