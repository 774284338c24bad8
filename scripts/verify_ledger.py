"""
Ledger Integrity Verification Script

Checks every stock counter against its ledger and prints the ones that drift.
Exit code 1 when any counter fails.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime
from uuid import UUID

from app.core import SessionLocal
from app.services import StockReportService

shop_id = UUID(sys.argv[1]) if len(sys.argv) > 1 else None

db = SessionLocal()
try:
    audits = StockReportService.audit_counters(db, shop_id)
finally:
    db.close()

failed = [a for a in audits if not a.ok]

print('=' * 70)
print('ShopStock Ledger Integrity Report')
print(f'Generated: {datetime.now().strftime("%Y-%m-%d %H:%M:%S")}')
print('=' * 70)
print(f'  Counters checked: {len(audits):,}')
print(f'  Failing: {len(failed):,}')

for a in failed:
    print(
        f'  {a.product_id}: stock {a.stock_quantity}, ledger sum {a.ledger_sum} '
        f'(drift {a.drift:+d}), last balance {a.last_balance}, reconciled {a.reconciled}'
    )

sys.exit(1 if failed else 0)
