# Routes package init
"""
ImageAnalyzer Backend: API Routes Package
==========================================

What:  HTTP route handlers. They extract request data, call a service and
       shape the response; business rules live in the services.

Route Inventory:
    - analyze.py: POST /api/analyze          (upload, analyse, delete)
                  GET  /api/analyze/config   (published upload limits)
    - health.py:  GET  /health               (service health check)
"""
