SCHEMA_SQL = r"""
-- Outlets (production kitchens and sales shops)
CREATE TABLE IF NOT EXISTS outlets (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL UNIQUE,
  location TEXT,
  outlet_type TEXT NOT NULL DEFAULT 'sales'   -- production / sales
);

-- Product master list
CREATE TABLE IF NOT EXISTS products (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  unit TEXT NOT NULL,
  type TEXT NOT NULL DEFAULT 'raw',           -- menu / kitchen / raw
  category TEXT,
  track_in_stock INTEGER NOT NULL DEFAULT 1,
  sales_based_raw_calc INTEGER NOT NULL DEFAULT 1
);

-- Whole -> slice pairs
CREATE TABLE IF NOT EXISTS product_conversions (
  id TEXT PRIMARY KEY,
  from_product_id TEXT NOT NULL,
  to_product_id TEXT NOT NULL,
  conversion_factor INTEGER NOT NULL,
  UNIQUE (from_product_id, to_product_id),
  FOREIGN KEY (from_product_id) REFERENCES products(id) ON DELETE CASCADE,
  FOREIGN KEY (to_product_id) REFERENCES products(id) ON DELETE CASCADE
);

-- Recipes (bill of materials per menu product)
CREATE TABLE IF NOT EXISTS recipes (
  id TEXT PRIMARY KEY,
  menu_product_id TEXT NOT NULL UNIQUE,
  FOREIGN KEY (menu_product_id) REFERENCES products(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS recipe_components (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  recipe_id TEXT NOT NULL,
  raw_product_id TEXT NOT NULL,
  quantity_per_unit REAL NOT NULL,
  FOREIGN KEY (recipe_id) REFERENCES recipes(id) ON DELETE CASCADE
);

-- Inventory ledger: one record per whole product
CREATE TABLE IF NOT EXISTS inventory_stocks (
  product_id TEXT PRIMARY KEY,
  production_whole INTEGER NOT NULL DEFAULT 0,
  production_slices INTEGER NOT NULL DEFAULT 0,
  prods_req_whole INTEGER NOT NULL DEFAULT 0,
  prods_req_slices INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS outlet_stocks (
  product_id TEXT NOT NULL,
  outlet_name TEXT NOT NULL,
  whole INTEGER NOT NULL DEFAULT 0,
  slices INTEGER NOT NULL DEFAULT 0,
  PRIMARY KEY (product_id, outlet_name),
  FOREIGN KEY (product_id) REFERENCES inventory_stocks(product_id) ON DELETE CASCADE
);

-- Stock checks (one per outlet per date in the common case)
CREATE TABLE IF NOT EXISTS stock_checks (
  id TEXT PRIMARY KEY,
  outlet TEXT NOT NULL,
  date TEXT NOT NULL,                    -- ISO date
  timestamp REAL NOT NULL,
  completed_by TEXT,
  done_date TEXT,
  replace_all_inventory INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS stock_counts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  check_id TEXT NOT NULL,
  product_id TEXT NOT NULL,
  quantity REAL NOT NULL DEFAULT 0,      -- closing count
  opening_stock REAL,
  received_stock REAL,
  wastage REAL,
  notes TEXT,
  FOREIGN KEY (check_id) REFERENCES stock_checks(id) ON DELETE CASCADE
);

-- Inter-outlet transfer requests
CREATE TABLE IF NOT EXISTS product_requests (
  id TEXT PRIMARY KEY,
  product_id TEXT NOT NULL,
  quantity REAL NOT NULL,
  from_outlet TEXT NOT NULL,
  to_outlet TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'pending',  -- pending / approved
  request_date TEXT,
  priority TEXT NOT NULL DEFAULT 'medium'
);

-- Idempotence markers for applied sales deductions
CREATE TABLE IF NOT EXISTS sales_deductions (
  id TEXT PRIMARY KEY,
  outlet_name TEXT NOT NULL,
  product_id TEXT NOT NULL,
  sales_date TEXT NOT NULL,
  whole_deducted REAL NOT NULL DEFAULT 0,
  slices_deducted REAL NOT NULL DEFAULT 0,
  ledger TEXT NOT NULL DEFAULT 'fifo',     -- production / outlet / fifo
  source TEXT NOT NULL DEFAULT 'sales',   -- sales / raw
  prods_req_credited REAL NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL,
  UNIQUE (outlet_name, product_id, sales_date, source)
);

CREATE TABLE IF NOT EXISTS sales_deduction_allocations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  deduction_id TEXT NOT NULL,
  stock_check_id TEXT NOT NULL,
  quantity REAL NOT NULL,
  FOREIGN KEY (deduction_id) REFERENCES sales_deductions(id) ON DELETE CASCADE
);

-- Last reconciliation per (date, outlet)
CREATE TABLE IF NOT EXISTS reconciliation_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  date TEXT NOT NULL,
  outlet TEXT NOT NULL,
  timestamp TEXT NOT NULL,
  result_json TEXT NOT NULL,
  UNIQUE (date, outlet)
);
"""
