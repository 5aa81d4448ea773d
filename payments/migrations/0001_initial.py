import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("gateway_order_id", models.CharField(db_index=True, max_length=64, unique=True)),
                ("receipt", models.CharField(blank=True, default="", max_length=40)),
                ("amount", models.PositiveBigIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ("currency", models.CharField(max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[("created", "Created"), ("paid", "Paid")],
                        db_index=True,
                        default="created",
                        max_length=12,
                    ),
                ),
                ("payment_id", models.CharField(blank=True, default="", max_length=64)),
                ("signature", models.CharField(blank=True, default="", max_length=128)),
                ("raw_resp", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ("-created_at",),
            },
        ),
    ]
