from decimal import Decimal

from django.test import TestCase

from inventario.models import (
    EstadoEvento,
    EstadoProceso,
    EventoProduccion,
    FaseReceta,
    Ingrediente,
    MovimientoInventario,
)
from inventario.services.errores import (
    InventarioInsuficiente,
    ItemNoEncontrado,
    TransicionInvalida,
    ValidacionInventarioError,
)
from inventario.services.recetas import (
    avanzar_fase,
    crear_receta,
    desactivar_receta,
    iniciar_receta,
    pausar_receta,
    producir_receta,
    reanudar_receta,
    reiniciar_receta,
    verificar_disponibilidad_receta,
)


class RecetaBaseTestCase(TestCase):
    def setUp(self):
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg", total_adquirido=Decimal("50"))
        self.agua = Ingrediente.objects.create(nombre="Agua", unidad_medida="l", total_adquirido=Decimal("50"))
        self.sal = Ingrediente.objects.create(nombre="Sal", unidad_medida="kg", total_adquirido=Decimal("5"))
        self.receta = crear_receta(
            nombre="Masa",
            rendimiento_cantidad=Decimal("5"),
            ingredientes=[
                {"ingrediente_id": self.harina.id, "cantidad": Decimal("2")},
                {"ingrediente_id": self.agua.id, "cantidad": Decimal("3")},
            ],
        )


class CrearRecetaTests(RecetaBaseTestCase):
    def test_crea_receta_en_borrador_con_lineas_ordenadas(self):
        self.assertEqual(self.receta.estado_proceso, EstadoProceso.BORRADOR)
        lineas = list(self.receta.ingredientes.all())
        self.assertEqual([l.ingrediente for l in lineas], [self.harina, self.agua])
        self.assertEqual([l.orden for l in lineas], [1, 2])
        self.assertEqual(lineas[0].unidad_medida, "kg")

    def test_rechaza_ingredientes_repetidos_o_inexistentes(self):
        with self.assertRaises(ValidacionInventarioError):
            crear_receta(
                nombre="Otra",
                rendimiento_cantidad=Decimal("1"),
                ingredientes=[
                    {"ingrediente_id": self.harina.id, "cantidad": Decimal("1")},
                    {"ingrediente_id": self.harina.id, "cantidad": Decimal("2")},
                ],
            )
        with self.assertRaises(ItemNoEncontrado):
            crear_receta(
                nombre="Otra",
                rendimiento_cantidad=Decimal("1"),
                ingredientes=[{"ingrediente_id": 99999, "cantidad": Decimal("1")}],
            )

    def test_rechaza_receta_sin_ingredientes(self):
        with self.assertRaises(ValidacionInventarioError):
            crear_receta(nombre="Vacía", rendimiento_cantidad=Decimal("1"), ingredientes=[])


class MaquinaDeFasesTests(RecetaBaseTestCase):
    def test_ciclo_completo_de_fases(self):
        receta = iniciar_receta(receta=self.receta, notas="Arranque")
        self.assertEqual(receta.estado_proceso, EstadoProceso.EN_PROCESO)
        self.assertEqual(receta.fase_actual, FaseReceta.PREPARADO)

        receta = avanzar_fase(receta=receta, operador="op1")
        self.assertEqual(receta.fase_actual, FaseReceta.INTERMEDIO)

        receta = avanzar_fase(receta=receta, operador="op1")
        self.assertEqual(receta.fase_actual, FaseReceta.TERMINADO)
        self.assertEqual(receta.estado_proceso, EstadoProceso.COMPLETADO)

        fases = list(receta.historial_fases.values_list("fase", flat=True))
        self.assertEqual(fases, [FaseReceta.PREPARADO, FaseReceta.INTERMEDIO, FaseReceta.TERMINADO])
        self.assertFalse(receta.historial_fases.filter(fecha_fin__isnull=True).exists())

        with self.assertRaises(TransicionInvalida):
            avanzar_fase(receta=receta, operador="op1")

    def test_no_avanza_desde_borrador(self):
        with self.assertRaises(TransicionInvalida):
            avanzar_fase(receta=self.receta, operador="op1")

    def test_pausa_y_reanuda(self):
        receta = iniciar_receta(receta=self.receta)
        receta = pausar_receta(receta=receta)
        self.assertEqual(receta.estado_proceso, EstadoProceso.PAUSADO)

        with self.assertRaises(TransicionInvalida):
            avanzar_fase(receta=receta, operador="op1")
        with self.assertRaises(TransicionInvalida):
            pausar_receta(receta=receta)

        receta = reanudar_receta(receta=receta)
        self.assertEqual(receta.estado_proceso, EstadoProceso.EN_PROCESO)
        self.assertEqual(receta.fase_actual, FaseReceta.PREPARADO)

    def test_solo_se_inicia_desde_borrador(self):
        receta = iniciar_receta(receta=self.receta)
        with self.assertRaises(TransicionInvalida):
            iniciar_receta(receta=receta)

    def test_ingredientes_adicionales_se_consumen_al_avanzar(self):
        receta = iniciar_receta(receta=self.receta)

        receta = avanzar_fase(
            receta=receta,
            operador="op1",
            notas="Se agrega sal",
            ingredientes_adicionales=[{"ingrediente_id": self.sal.id, "cantidad": Decimal("0.5")}],
        )

        self.sal.refresh_from_db()
        self.assertEqual(self.sal.consumido, Decimal("0.5"))
        linea = receta.ingredientes.get(ingrediente=self.sal)
        self.assertTrue(linea.adicional)
        self.assertEqual(linea.orden, 3)

        registro = receta.historial_fases.get(fase=FaseReceta.INTERMEDIO)
        self.assertTrue(registro.correlacion_id)
        self.assertEqual(registro.ingredientes_agregados[0]["nombre"], "Sal")
        evento = EventoProduccion.objects.get(correlacion_id=registro.correlacion_id)
        self.assertEqual(evento.tipo, EventoProduccion.TIPO_CONSUMO_FASE)
        self.assertEqual(evento.receta_id, receta.id)

    def test_ingrediente_adicional_insuficiente_no_avanza(self):
        receta = iniciar_receta(receta=self.receta)

        with self.assertRaises(InventarioInsuficiente):
            avanzar_fase(
                receta=receta,
                operador="op1",
                ingredientes_adicionales=[{"ingrediente_id": self.sal.id, "cantidad": Decimal("6")}],
            )

        receta.refresh_from_db()
        self.assertEqual(receta.fase_actual, FaseReceta.PREPARADO)
        self.assertFalse(receta.ingredientes.filter(adicional=True).exists())

    def test_reiniciar_restituye_adicionales(self):
        receta = iniciar_receta(receta=self.receta)
        receta = avanzar_fase(
            receta=receta,
            operador="op1",
            ingredientes_adicionales=[{"ingrediente_id": self.sal.id, "cantidad": Decimal("1")}],
        )

        receta = reiniciar_receta(receta=receta, operador="op1", motivo="Se quemó")

        self.assertEqual(receta.estado_proceso, EstadoProceso.BORRADOR)
        self.assertEqual(receta.fase_actual, FaseReceta.PREPARADO)
        self.sal.refresh_from_db()
        self.assertEqual(self.sal.consumido, Decimal("0"))
        self.assertFalse(receta.ingredientes.filter(adicional=True).exists())
        self.assertEqual(receta.ingredientes.count(), 2)

        ultimo = receta.historial_fases.order_by("-id").first()
        self.assertTrue(ultimo.reinicio)
        self.assertEqual(ultimo.notas, "Se quemó")

        with self.assertRaises(TransicionInvalida):
            reiniciar_receta(receta=receta, operador="op1")


class ProducirRecetaTests(RecetaBaseTestCase):
    def test_disponibilidad_por_lotes(self):
        self.assertEqual(verificar_disponibilidad_receta(receta=self.receta, lotes=Decimal("10")), [])

        faltantes = verificar_disponibilidad_receta(receta=self.receta, lotes=Decimal("30"))
        self.assertEqual(sorted(f.nombre for f in faltantes), ["Agua", "Harina"])
        agua = next(f for f in faltantes if f.nombre == "Agua")
        self.assertEqual(agua.requerido, Decimal("90"))
        self.assertEqual(agua.disponible, Decimal("50"))

    def test_producir_receta(self):
        resultado = producir_receta(receta=self.receta, lotes=Decimal("4"), operador="op1")

        self.receta.refresh_from_db()
        self.harina.refresh_from_db()
        self.agua.refresh_from_db()
        self.assertEqual(self.receta.producido, Decimal("20"))
        self.assertEqual(self.harina.consumido, Decimal("8"))
        self.assertEqual(self.agua.consumido, Decimal("12"))
        self.assertEqual(
            MovimientoInventario.objects.filter(correlacion_id=resultado.correlacion_id).count(),
            3,
        )

    def test_desactivar_receta_revierte_sus_eventos(self):
        producir_receta(receta=self.receta, lotes=Decimal("2"), operador="op1")
        receta = iniciar_receta(receta=self.receta)
        avanzar_fase(
            receta=receta,
            operador="op1",
            ingredientes_adicionales=[{"ingrediente_id": self.sal.id, "cantidad": Decimal("1")}],
        )

        receta = desactivar_receta(receta=receta, operador="admin")

        self.assertFalse(receta.activo)
        self.assertEqual(receta.producido, Decimal("0"))
        for ingrediente in (self.harina, self.agua, self.sal):
            ingrediente.refresh_from_db()
            self.assertEqual(ingrediente.consumido, Decimal("0"))
        self.assertFalse(receta.eventos.exclude(estado=EstadoEvento.REVERTIDO).exists())

        with self.assertRaises(ItemNoEncontrado):
            producir_receta(receta=receta, lotes=Decimal("1"), operador="op1")
