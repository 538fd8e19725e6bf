"""esmport: convert legacy package.js packages into ES module npm packages."""
