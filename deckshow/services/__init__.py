"""Domain services: naming, storage, project discovery and upload orchestration."""
