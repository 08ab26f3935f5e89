# Services package init
"""
ImageAnalyzer Backend: Services Layer
======================================

What:  Upload ingestion logic, independent of HTTP.

Service Inventory:
    - filename_policy:   allow-lists, denylists and patterns
    - ValidationGate:    ordered per-file checks (validation.py)
    - SecureNameGenerator: generated storage names (naming.py)
    - StorageWriter:     confined writes into the upload root (storage.py)
    - LifecycleManager:  per-request cleanup, age sweep, wipe (lifecycle.py)
    - ErrorTranslator:   exception → status, code, message (error_translator.py)
    - ImageConsumer:     abstract downstream analysis (consumer.py)
    - IngestionService:  orchestrates one request (ingestion_service.py)
"""
