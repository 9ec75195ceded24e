# facturacion/services/__init__.py
"""
Servicios de dominio del módulo de facturación electrónica:

- Integración Hacienda CR (claves, XML v4.3, firma XAdES-EPES, IDP, recepción, poller).
- Representación gráfica (PDF).
- Notificaciones (email al receptor).

Los submódulos específicos viven en:
- facturacion/services/hacienda/
- facturacion/services/representacion_grafica.py
- facturacion/services/notifications.py
"""
