from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("txnid", models.CharField(max_length=64, unique=True)),
                ("merchant_key", models.CharField(max_length=64)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("product_info", models.CharField(max_length=200)),
                ("first_name", models.CharField(max_length=120)),
                ("email", models.EmailField(max_length=254)),
                ("phone", models.CharField(blank=True, default="", max_length=20)),
                ("success_url", models.URLField(max_length=500)),
                ("failure_url", models.URLField(max_length=500)),
                ("udf1", models.CharField(blank=True, default="", max_length=255)),
                ("udf2", models.CharField(blank=True, default="", max_length=255)),
                ("udf3", models.CharField(blank=True, default="", max_length=255)),
                ("udf4", models.CharField(blank=True, default="", max_length=255)),
                ("udf5", models.CharField(blank=True, default="", max_length=255)),
                ("request_hash", models.CharField(max_length=128)),
                ("payment_record_id", models.BigIntegerField(db_index=True)),
                ("user_ref", models.CharField(blank=True, default="", max_length=64)),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("initiated", "Initiated"),
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("failure", "Failure"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="initiated",
                        max_length=20,
                    ),
                ),
                ("gateway_txn_id", models.CharField(blank=True, default="", max_length=64)),
                ("status_code", models.CharField(blank=True, default="", max_length=32)),
                ("error_code", models.CharField(blank=True, default="", max_length=64)),
                ("error_message", models.CharField(blank=True, default="", max_length=255)),
                ("raw_response", models.JSONField(blank=True, default=dict)),
                ("replay_payload", models.JSONField(blank=True, null=True)),
                ("replay_attempts", models.PositiveIntegerField(default=0)),
                ("next_replay_at", models.DateTimeField(blank=True, null=True)),
                ("needs_manual_review", models.BooleanField(default=False)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["state", "created_at"], name="payments_txn_state_idx"),
                    models.Index(fields=["next_replay_at"], name="payments_txn_replay_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gte", 0)),
                        name="payments_txn_amount_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("txnid", models.CharField(max_length=64)),
                ("gateway_txn_id", models.CharField(max_length=64)),
                ("status_code", models.CharField(max_length=32)),
                ("applied_at", models.DateTimeField(auto_now_add=True)),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="payments.transaction",
                    ),
                ),
            ],
            options={
                "db_table": "payments_idempotency",
                "indexes": [
                    models.Index(fields=["applied_at"], name="payments_idem_applied_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("txnid", "gateway_txn_id", "status_code"),
                        name="uniq_payments_notification",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event", models.CharField(max_length=64)),
                ("txnid", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("request_id", models.CharField(blank=True, default="", max_length=64)),
                ("message", models.TextField(blank=True, default="")),
                ("meta", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        to="payments.transaction",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["event", "created_at"], name="payments_audit_event_idx"),
                ],
            },
        ),
    ]
