from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase

from inventario.admin import revertir_seleccionados
from inventario.models import EstadoEvento, EventoProduccion, Ingrediente, MovimientoInventario, Receta
from inventario.services.inventario import debitar
from inventario.services.produccion import InsumoProduccion, SolicitudProduccion, producir

User = get_user_model()


@mock.patch("inventario.admin.messages")
class RevertirSeleccionadosTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_superuser(username="admin", password="testpass123", email="a@b.cl")
        self.request = RequestFactory().post("/admin/inventario/movimientoinventario/")
        self.request.user = self.admin
        self.harina = Ingrediente.objects.create(nombre="Harina", unidad_medida="kg", total_adquirido=Decimal("20"))

    def test_revierte_el_evento_completo(self, messages):
        receta = Receta.objects.create(nombre="Masa", rendimiento_cantidad=Decimal("1"))
        produccion = producir(
            SolicitudProduccion(
                tipo_salida="receta",
                salida_id=receta.id,
                cantidad=Decimal("2"),
                operador="op1",
                insumos=[InsumoProduccion("ingrediente", self.harina.id, Decimal("6"))],
            )
        )

        revertir_seleccionados(
            None,
            self.request,
            MovimientoInventario.objects.filter(correlacion_id=produccion.correlacion_id),
        )

        self.harina.refresh_from_db()
        receta.refresh_from_db()
        self.assertEqual(self.harina.consumido, Decimal("0"))
        self.assertEqual(receta.producido, Decimal("0"))
        messages.success.assert_called_once()

    def test_no_revierte_un_evento_en_curso(self, messages):
        debitar(
            tipo_item="ingrediente",
            item_id=self.harina.id,
            cantidad=Decimal("5"),
            motivo="Producción en curso",
            operador="op1",
            correlacion_id="evento-en-curso",
        )
        EventoProduccion.objects.create(
            correlacion_id="evento-en-curso",
            tipo=EventoProduccion.TIPO_PRODUCCION,
            estado=EstadoEvento.PENDIENTE,
            operador="op1",
        )

        revertir_seleccionados(
            None,
            self.request,
            MovimientoInventario.objects.filter(correlacion_id="evento-en-curso"),
        )

        self.harina.refresh_from_db()
        self.assertEqual(self.harina.consumido, Decimal("5"))
        self.assertEqual(
            EventoProduccion.objects.get(correlacion_id="evento-en-curso").estado,
            EstadoEvento.PENDIENTE,
        )
        messages.success.assert_not_called()
        self.assertTrue(messages.warning.called)

    def test_usuario_sin_rol_admin(self, messages):
        usuario = User.objects.create_user(username="cocinero", password="testpass123")
        self.request.user = usuario
        entrada = MovimientoInventario.objects.filter(tipo_item="ingrediente")

        revertir_seleccionados(None, self.request, entrada)

        messages.error.assert_called_once()
