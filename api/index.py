from mangum import Mangum

from wallet_ledger.api import app

handler = Mangum(app)
