from pharmaflow.models.catalog import Category, Medicine, Supplier
from pharmaflow.models.batch import Batch
from pharmaflow.models.inventory import StockMovement
from pharmaflow.models.sales import Sale, SaleItem
from pharmaflow.models.alert import Alert
