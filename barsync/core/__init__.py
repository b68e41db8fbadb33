"""barsync core: models, storage, upstream access and services."""
