from django.conf import settings

VALORES_POR_DEFECTO = {
    # Envuelve cada producción completa en una sola transacción.
    "PRODUCCION_ATOMICA": True,
    # Al revertir, conserva el movimiento original marcado como revertido
    # en lugar de eliminarlo.
    "CONSERVAR_MOVIMIENTOS_REVERTIDOS": True,
    # Minutos que un evento puede quedar pendiente antes de ser reconciliado.
    "MINUTOS_RECONCILIACION": 30,
    "OPERADOR_SISTEMA": "sistema",
    "LIMITE_PAGINA_MAXIMO": 200,
}


def obtener_config() -> dict:
    """
    Devuelve la configuración del módulo de inventario, combinando los
    valores por defecto con el diccionario INVENTARIO de settings.
    """
    config = dict(VALORES_POR_DEFECTO)
    config.update(getattr(settings, "INVENTARIO", None) or {})
    return config
