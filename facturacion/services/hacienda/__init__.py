# facturacion/services/hacienda/__init__.py
"""
Integración con el Ministerio de Hacienda de Costa Rica (comprobantes v4.3).
"""
