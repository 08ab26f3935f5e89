"""
ImageAnalyzer Backend: Application Package Initializer
=======================================================

Secure ingestion of user-uploaded images for an AI image-analysis API.

Architecture Note:
    ┌─────────────────────────────────────┐
    │     Routes + Middleware (API)       │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │      Services (Ingestion Logic)     │  ← validate, name, store, delete
    ├─────────────────────────────────────┤
    │          Schemas (Records)          │  ← Pydantic models
    ├─────────────────────────────────────┤
    │        Upload Directory (Disk)      │  ← transient, flat, confined
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
