from .errores import (
    InventarioError,
    InventarioInsuficiente,
    ItemNoEncontrado,
    MovimientoNoReversible,
    NadaQueRevertir,
    ProduccionAbortada,
    StockInsuficiente,
    TransicionInvalida,
    ValidacionInventarioError,
)
from .inventario import acreditar, ajustar, debitar, registrar_entrada
from .movimientos import listar_movimientos
from .produccion import InsumoProduccion, SolicitudProduccion, producir
from .reversion import reconciliar_eventos_pendientes, revertir_evento, revertir_movimiento
