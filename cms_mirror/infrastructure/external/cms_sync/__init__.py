"""
Pipeline de sincronización one-way: CMS (API HTTP) -> model store local.

Este paquete está diseñado para ejecutarse como job (poll loop / timer),
no como parte de un request/response.

Fases:
- Discovery: entity map + schema del CMS (fatal si falla, antes de mutar el store).
- Definición de modelos: schema del CMS -> campos tipados (escalares y referencias).
- Full sync: carga completa de cada tipo de entidad (aislando fallos por tipo).
- Change sync: aplica el change feed en orden (create/update = upsert, delete).
"""
