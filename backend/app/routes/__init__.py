# Routes package init
"""
Patient Image Backend - API Routes Package
============================================

Route Inventory:
    - images.py:  POST/GET/DELETE /image   (image record operations)
                  GET /uploads/{path}      (serve uploaded files)
    - health.py:  GET /health              (service health check)

Routes stay thin: they extract request data, call a service and format the
response. Business rules live in app.services.
"""
