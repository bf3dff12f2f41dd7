from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone

from inventario.models import Ingrediente, Material, MovimientoInventario
from inventario.services.errores import ValidacionInventarioError
from inventario.services.inventario import debitar, registrar_entrada
from inventario.services.movimientos import (
    listar_movimientos,
    motivo_con_correlacion,
    obtener_detalle_item,
    obtener_estadisticas_movimientos,
)
from inventario.services.reversion import revertir_movimiento


class MotivoConCorrelacionTests(TestCase):
    def test_agrega_sufijo(self):
        self.assertEqual(motivo_con_correlacion("Producción", "abc"), "Producción - ID: abc")

    def test_sin_correlacion_no_cambia(self):
        self.assertEqual(motivo_con_correlacion(" Compra ", None), "Compra")


class ListarMovimientosTests(TestCase):
    def setUp(self):
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg")
        self.caja = Material.objects.create(nombre="Caja", unidad_medida="unidad")

        self.entrada = registrar_entrada(
            tipo_item="ingrediente",
            item_id=self.harina.id,
            cantidad=Decimal("10"),
            operador="Ana Perez",
        )
        debitar(
            tipo_item="ingrediente",
            item_id=self.harina.id,
            cantidad=Decimal("2"),
            motivo="uso",
            operador="luis",
        )
        registrar_entrada(
            tipo_item="material",
            item_id=self.caja.id,
            cantidad=Decimal("5"),
            operador="ana perez",
        )

    def test_mas_recientes_primero(self):
        pagina = listar_movimientos()
        self.assertEqual(pagina.total, 3)
        self.assertEqual(pagina.movimientos[0].tipo_item, "material")
        self.assertEqual(pagina.movimientos[-1].id, self.entrada.movimiento.id)

    def test_filtros(self):
        self.assertEqual(listar_movimientos(tipo_item="ingrediente").total, 2)
        self.assertEqual(listar_movimientos(tipo_item="ingrediente", item_id=self.harina.id).total, 2)
        self.assertEqual(listar_movimientos(tipo=MovimientoInventario.TIPO_SALIDA).total, 1)
        self.assertEqual(listar_movimientos(subtipo=MovimientoInventario.SUBTIPO_MANUAL).total, 2)
        self.assertEqual(listar_movimientos(operador="ANA").total, 2)

    def test_excluir_revertidos(self):
        revertir_movimiento(movimiento_id=self.entrada.movimiento.id, operador="admin")

        self.assertEqual(listar_movimientos(incluir_revertidos=False, tipo=MovimientoInventario.TIPO_ENTRADA).total, 1)
        self.assertEqual(listar_movimientos(tipo=MovimientoInventario.TIPO_ENTRADA).total, 2)

    def test_filtro_por_fechas(self):
        hoy = timezone.localdate()
        self.assertEqual(listar_movimientos(fecha_inicio=hoy, fecha_fin=hoy).total, 3)
        self.assertEqual(listar_movimientos(fecha_inicio=hoy + timedelta(days=1)).total, 0)
        self.assertEqual(listar_movimientos(fecha_fin=timezone.now() - timedelta(hours=1)).total, 0)

    def test_paginacion(self):
        pagina = listar_movimientos(pagina=2, limite=2)
        self.assertEqual(pagina.total, 3)
        self.assertEqual(pagina.total_paginas, 2)
        self.assertEqual(len(pagina.movimientos), 1)

    @override_settings(INVENTARIO={"LIMITE_PAGINA_MAXIMO": 2})
    def test_limites_de_paginacion(self):
        with self.assertRaises(ValidacionInventarioError):
            listar_movimientos(limite=3)
        with self.assertRaises(ValidacionInventarioError):
            listar_movimientos(pagina=0)


class EstadisticasYDetalleTests(TestCase):
    def setUp(self):
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg")
        registrar_entrada(tipo_item="ingrediente", item_id=self.harina.id, cantidad=Decimal("10"), operador="op1")
        debitar(tipo_item="ingrediente", item_id=self.harina.id, cantidad=Decimal("4"), motivo="uso", operador="op1")

    def test_estadisticas(self):
        datos = obtener_estadisticas_movimientos()

        self.assertEqual(datos["total_movimientos"], 2)
        self.assertEqual(datos["revertidos"], 0)
        self.assertEqual(datos["por_item"]["ingrediente"]["salida"]["cantidad"], Decimal("4"))
        self.assertEqual(datos["por_item"]["ingrediente"]["entrada"]["movimientos"], 1)
        self.assertEqual(datos["por_subtipo"], {"manual": 1, "consumo": 1})

    def test_detalle_item(self):
        detalle = obtener_detalle_item(tipo_item="ingrediente", item_id=self.harina.id)

        self.assertEqual(detalle["item"], self.harina)
        self.assertEqual(detalle["disponible"], Decimal("6"))
        self.assertEqual(len(detalle["movimientos"]), 2)
        self.assertEqual(detalle["movimientos"][0].tipo, MovimientoInventario.TIPO_SALIDA)
