"""Fair-odds estimation and EV scoring for sportsbook quote panels."""
